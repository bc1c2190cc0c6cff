"""realtime/ -- Push channel for key-update / key-delete events.

Layer rule: realtime/ may import from auth/ and core/. It does NOT import
from services/ or vault/.
"""
