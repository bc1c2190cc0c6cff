"""
api/serializers.py -- Domain dataclass -> response model mapping.

Keys and categories leave the API under their hashid, and references to users
are rendered as logins, so most mappings need a store lookup or the id codec
from app.state. Keeping them here gives the key, category, user and group
routers one definition each instead of a copy per router.
"""

from __future__ import annotations

from fastapi import Request

from api.models import CategoryResponse, GroupResponse, KeyResponse, UserResponse
from auth.models import Group, User
from vault.models import Category, Key


def decode_id(request: Request, hashid: str) -> int:
    """Hashid -> internal id. Raises InvalidIdentifierError (400)."""
    return request.app.state.codec.decode(hashid)


def encode_id(request: Request, value: int | None) -> str | None:
    return request.app.state.codec.encode(value) if value is not None else None


def _login_of(request: Request, user_id: int | None) -> str | None:
    if user_id is None:
        return None
    user = request.app.state.user_store.get_by_id(user_id)
    return user.login if user is not None else None


def user_response(user: User) -> UserResponse:
    return UserResponse(
        login=user.login,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        activated=user.activated,
        authorities=sorted(user.authorities),
        groups=sorted(user.group_ids),
        public_key=user.public_key,
        created_at=user.created_at or "",
    )


def group_response(request: Request, group: Group) -> GroupResponse:
    members = request.app.state.user_store.list_users_by_ids(group.member_ids)
    return GroupResponse(
        id=group.id,
        name=group.name,
        users=[u.login for u in members],
        created_at=group.created_at or "",
    )


def key_response(request: Request, key: Key) -> KeyResponse:
    return KeyResponse(
        id=encode_id(request, key.id),
        name=key.name,
        login=key.login,
        notes=key.notes,
        category=encode_id(request, key.category_id),
        creator=_login_of(request, key.creator_id),
        created_at=key.created_at or "",
    )


def category_response(request: Request, category: Category) -> CategoryResponse:
    vault = request.app.state.vault_store
    return CategoryResponse(
        id=encode_id(request, category.id),
        name=category.name,
        parent=encode_id(request, category.parent_id),
        tree_level=category.level,
        creator=_login_of(request, category.creator_id),
        responsible=_login_of(request, category.responsible_id),
        groups=sorted(category.group_ids),
        children=[encode_id(request, c.id) for c in vault.list_children(category.id)],
        keys=[encode_id(request, k.id) for k in vault.list_keys_in_category(category.id)],
        created_at=category.created_at or "",
    )
