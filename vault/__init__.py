"""vault/ -- Persistence for the category tree, keys and encrypted copies.

Layer rule: vault/ imports only stdlib + third-party libraries.
Access decisions live in services/; this package only stores rows.
"""
