"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer JWTs are the only credential. A token is accepted when:
  1. its signature and expiry verify (auth.tokens.decode_access_token),
  2. its jti is still present in the token store (not revoked), and
  3. the user it names still exists and is activated.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 without ROLE_ADMIN.

user_from_token() is shared with the WebSocket endpoint, which receives its
token as a query parameter instead of a header.

Layer rule: no imports from vault/, services/, or realtime/.
  auth/dependencies.py may import from fastapi (for Request/HTTPException)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.store import UserStore
from auth.tokens import decode_access_token


def user_from_token(user_store: UserStore, token: str) -> User | None:
    """Resolve a raw JWT to its activated, non-revoked user, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    if user_store.get_token(payload["jti"]) is None:
        return None
    user = user_store.get_by_id(payload["user_id"])
    if user is None or not user.activated or user.login != payload["sub"]:
        return None
    return user


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via its Authorization header.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    token = bearer_token(request)
    if not token:
        return None
    return user_from_token(request.app.state.user_store, token)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(request: Request) -> User:
    """Require ROLE_ADMIN. Raises HTTP 401 if unauthenticated, HTTP 403 otherwise."""
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
