"""
api/routes/v1/users.py -- User directory REST endpoints.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /users/register           -- create an inactive user (admin, or public
                                      when SELF_REGISTRATION_ENABLED=true)
  GET    /users/activate           -- ?activation_key=... (public)
  GET    /users/deactivate         -- ?login=... (admin)
  POST   /users/reset_password     -- issue a reset key for an email (admin)
  PUT    /users/reset_password     -- set a new password with a reset key (public)
  PUT    /users/me/public-key      -- set or clear the caller's public key
  GET    /users                    -- list users (admin)
  GET    /users/{login}            -- one user (admin, or the user themself)
  PUT    /users/{login}            -- update profile (admin)
  DELETE /users/{login}            -- delete user (admin)
  PUT    /users/{login}/authorities -- replace authorities (admin)

Reset keys are returned to the admin rather than mailed; delivering them is
left to whoever operates the instance.
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response

from api.models import (
    PasswordResetFinish,
    PasswordResetKeyResponse,
    PasswordResetRequest,
    PublicKeyUpdate,
    RegisteredUserResponse,
    UserRegister,
    UserResponse,
    UserUpdate,
)
from api.serializers import user_response
from auth.dependencies import get_current_user, require_admin, try_get_current_user
from auth.models import User
from core.config import get_settings
from services.users import UserService

router = APIRouter()


def _service(request: Request) -> UserService:
    return request.app.state.user_service


# ---------------------------------------------------------------------------
# Registration and activation
# ---------------------------------------------------------------------------


@router.post("/users/register", response_model=RegisteredUserResponse, status_code=201)
def register(request: Request, body: UserRegister) -> RegisteredUserResponse:
    """Register a new, inactive user.

    Admins get the activation key in the response. Anonymous callers (only
    allowed with self-registration enabled) do not.
    """
    caller = try_get_current_user(request)
    is_admin = caller is not None and caller.is_admin
    if not is_admin and not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Registration is restricted to administrators."},
        )
    user = _service(request).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    base = user_response(user).model_dump()
    return RegisteredUserResponse(**base, activation_key=user.activation_key if is_admin else None)


@router.get("/users/activate", response_model=UserResponse)
def activate(request: Request, activation_key: str) -> UserResponse:
    return user_response(_service(request).activate(activation_key))


@router.get("/users/deactivate", response_model=UserResponse)
def deactivate(request: Request, login: str, current_user: User = Depends(require_admin)) -> UserResponse:
    return user_response(_service(request).deactivate(login))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/users/reset_password", response_model=PasswordResetKeyResponse)
def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    current_user: User = Depends(require_admin),
) -> PasswordResetKeyResponse:
    reset_key = _service(request).generate_password_reset_key(body.email)
    return PasswordResetKeyResponse(reset_key=reset_key)


@router.put("/users/reset_password", status_code=204)
def finish_password_reset(request: Request, body: PasswordResetFinish) -> Response:
    _service(request).reset_password(body.password, body.reset_key)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Self service
# ---------------------------------------------------------------------------


@router.put("/users/me/public-key", response_model=UserResponse)
def set_public_key(
    request: Request,
    body: PublicKeyUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Store the caller's public key so others can encrypt copies for them."""
    return user_response(_service(request).set_public_key(current_user, body.public_key))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    return [user_response(u) for u in _service(request).get_all()]


@router.get("/users/{login}", response_model=UserResponse)
def get_user(request: Request, login: str, current_user: User = Depends(get_current_user)) -> UserResponse:
    if not current_user.is_admin and current_user.login != login:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user_response(_service(request).get(login))


@router.put("/users/{login}", response_model=UserResponse)
def update_user(
    request: Request,
    login: str,
    body: UserUpdate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Update profile fields. Changing the email also changes the login and
    deactivates the account until it is activated again."""
    user = _service(request).update(
        login,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return user_response(user)


@router.delete("/users/{login}", status_code=204)
def delete_user(request: Request, login: str, current_user: User = Depends(require_admin)) -> Response:
    _service(request).delete(login)
    return Response(status_code=204)


@router.put("/users/{login}/authorities", response_model=UserResponse)
def update_authorities(
    request: Request,
    login: str,
    body: list[str] = Body(...),
    current_user: User = Depends(require_admin),
) -> UserResponse:
    return user_response(_service(request).update_authorities(login, body))
