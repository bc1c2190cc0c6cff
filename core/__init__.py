"""core/ -- Kernel: configuration, domain exceptions and the id codec.

Layer rule: core/ imports only stdlib + third-party libraries. Every other
package may import from core/; core/ imports from none of them.
"""
