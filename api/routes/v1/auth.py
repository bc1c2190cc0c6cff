"""
api/routes/v1/auth.py -- OAuth2 token issuance and identity endpoints.

Routes:
  POST /oauth/token        -- OAuth2 password grant; returns a bearer JWT
  POST /oauth/revoke       -- revoke every token of the caller (logout everywhere)
  GET  /api/v1/auth/me     -- current user info (requires auth)

/oauth/* lives outside the /api/v1 prefix, so this module exposes two
routers: oauth_router (mounted at the root) and router (mounted at /api/v1).

Security:
  POST /oauth/token is rate-limited per IP (Settings.token_rate_limit).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on token responses (RFC 6749 section 5.1).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import MeResponse, TokenResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, issue_token, revoke_tokens
from core.config import get_settings

# Auth policy:
# - POST /oauth/token:       public -- the token endpoint must be unauthenticated
# - POST /oauth/revoke:      requires auth (get_current_user)
# - GET  /api/v1/auth/me:    requires auth (get_current_user)
oauth_router = APIRouter()
router = APIRouter()


@limiter.limit(get_settings().token_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@oauth_router.post("/oauth/token", response_model=TokenResponse)
def token(
    request: Request,
    grant_type: str = Form(...),
    username: str = Form(...),
    password: str = Form(...),
    scope: str = Form(""),
) -> JSONResponse:
    """Exchange a login (or email) and password for a bearer token.

    Only grant_type=password is supported. Unknown user, wrong password and
    deactivated user all produce the same invalid_grant error so the response
    does not reveal which one it was.
    """
    if grant_type != "password":
        return _no_store(
            JSONResponse(
                status_code=400,
                content={
                    "error": {"code": "unsupported_grant_type", "message": "Only the password grant is supported."}
                },
            )
        )

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, username, password)
    if user is None:
        return _no_store(
            JSONResponse(
                status_code=401,
                content={"error": {"code": "invalid_grant", "message": "Invalid username or password."}},
            )
        )

    access_token, expires_in = issue_token(user_store, user)
    return _no_store(
        JSONResponse(
            status_code=200,
            content=TokenResponse(
                access_token=access_token,
                token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
                expires_in=expires_in,
                scope=scope,
            ).model_dump(),
        )
    )


@oauth_router.post("/oauth/revoke", status_code=204)
def revoke(request: Request, current_user: User = Depends(get_current_user)) -> Response:
    """Revoke every token issued to the caller, including the one in use."""
    revoke_tokens(request.app.state.user_store, current_user.login)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        login=current_user.login,
        email=current_user.email,
        authorities=sorted(current_user.authorities),
    )


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    return resp
