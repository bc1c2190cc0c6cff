"""
api/routes/v1/keys.py -- Key and encrypted-copy REST endpoints.

Routes (keys are addressed by hashid):
  POST   /keys                        -- create a key with per-user copies
  GET    /keys                        -- list keys visible to the caller
  DELETE /keys                        -- delete every key (admin)
  GET    /keys/{key_id}               -- one key; 403 if missing or not visible
  PUT    /keys/{key_id}               -- update; copies are fully replaced
  DELETE /keys/{key_id}               -- delete with all copies (admin)
  GET    /keys/{key_id}/password      -- the caller's own encrypted copy
  GET    /keys/{key_id}/subscribers   -- accessors with a public key

The ciphertexts in encrypted_passwords are opaque: the client encrypts the
secret once per recipient with that recipient's public key. A request naming
a recipient who could not see the key is rejected as a whole (403) and
nothing is written.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    EncryptedPasswordResponse,
    KeyCreate,
    KeyResponse,
    KeyUpdate,
    SubscriberResponse,
)
from api.serializers import decode_id, encode_id, key_response
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from services.keys import KeyService

router = APIRouter(dependencies=[Depends(get_current_user)])


def _service(request: Request) -> KeyService:
    return request.app.state.key_service


@router.post("/keys", response_model=KeyResponse, status_code=201)
def create_key(
    request: Request,
    body: KeyCreate,
    current_user: User = Depends(get_current_user),
) -> KeyResponse:
    category_id = decode_id(request, body.category) if body.category else None
    key = _service(request).create(
        current_user,
        name=body.name,
        login=body.login,
        notes=body.notes,
        category_id=category_id,
        encrypted_passwords={e.login: e.encrypted_password for e in body.encrypted_passwords},
    )
    return key_response(request, key)


@router.get("/keys", response_model=list[KeyResponse])
def list_keys(request: Request, current_user: User = Depends(get_current_user)) -> list[KeyResponse]:
    return [key_response(request, k) for k in _service(request).get_all(current_user)]


@router.delete("/keys", status_code=204, dependencies=[Depends(require_admin)])
def delete_all_keys(request: Request) -> Response:
    _service(request).delete_all()
    return Response(status_code=204)


@router.get("/keys/{key_id}", response_model=KeyResponse)
def get_key(request: Request, key_id: str, current_user: User = Depends(get_current_user)) -> KeyResponse:
    key = _service(request).get(current_user, decode_id(request, key_id))
    if key is None:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You are not authorized for this key."},
        )
    return key_response(request, key)


@router.put("/keys/{key_id}", response_model=KeyResponse)
def update_key(
    request: Request,
    key_id: str,
    body: KeyUpdate,
    current_user: User = Depends(get_current_user),
) -> KeyResponse:
    key = _service(request).update(
        current_user,
        decode_id(request, key_id),
        name=body.name,
        login=body.login,
        notes=body.notes,
        encrypted_passwords={e.login: e.encrypted_password for e in body.encrypted_passwords},
    )
    return key_response(request, key)


@router.delete("/keys/{key_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_key(request: Request, key_id: str) -> Response:
    _service(request).delete(decode_id(request, key_id))
    return Response(status_code=204)


@router.get("/keys/{key_id}/password", response_model=EncryptedPasswordResponse)
def get_encrypted_password(
    request: Request,
    key_id: str,
    current_user: User = Depends(get_current_user),
) -> EncryptedPasswordResponse:
    copy = _service(request).get_encrypted_password(current_user, decode_id(request, key_id))
    return EncryptedPasswordResponse(
        key=encode_id(request, copy.key_id),
        encrypted_password=copy.encrypted_password,
        created_at=copy.created_at or "",
    )


@router.get("/keys/{key_id}/subscribers", response_model=list[SubscriberResponse])
def get_subscribers(
    request: Request,
    key_id: str,
    current_user: User = Depends(get_current_user),
) -> list[SubscriberResponse]:
    """Who to encrypt copies for: every accessor that registered a public key."""
    users = _service(request).get_subscribers(current_user, decode_id(request, key_id))
    return [SubscriberResponse(login=u.login, public_key=u.public_key) for u in users]
