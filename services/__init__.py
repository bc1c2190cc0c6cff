"""services/ -- Use cases over the auth and vault stores.

Every operation takes the acting user explicitly where authorization matters
and raises core.exceptions on failure. Route handlers stay thin.

Layer rule: services/ may import from core/, auth/ and vault/. It does NOT
import from api/ or realtime/; notification delivery is injected through the
Notifier protocol in services/keys.py.
"""
