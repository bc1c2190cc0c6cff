"""auth/ -- Users, groups, authorities and OAuth2 tokens for keyshare.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/, vault/, services/, or realtime/.
api/ and services/ import from auth/, not the other way around.
"""
