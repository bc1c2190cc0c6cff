"""
auth/models.py -- Domain dataclasses for the user/group directory.

Pattern: Data class (pure data container, zero logic). Mirrors vault/models.py
-- dataclasses own domain shape; stores and services do the work.

Relationships are plain id fields. A User carries its authorities and group
ids as sets resolved by the store at load time; nothing here holds a
reference to another entity object.

Layer rule: no imports from api/, vault/, services/, or realtime/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLE_ADMIN = "ROLE_ADMIN"
ROLE_USER = "ROLE_USER"

AUTHORITIES: tuple[str, ...] = (ROLE_ADMIN, ROLE_USER)


@dataclass
class User:
    """A person who can log in, belong to groups, and own encrypted passwords.

    login is derived from the local part of the email address and is the
    identity used in tokens and on the per-user notification channel.

    activation_key is set on registration and on deactivation; it is cleared
    once the user is activated. reset_key is set while a password reset is
    pending and cleared when the reset completes.

    public_key is the user's public key material. Clients use it to encrypt
    a copy of a secret for this user; the server only stores and forwards it.
    """

    login: str
    email: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    hashed_password: str | None = None
    activated: bool = False
    activation_key: str | None = None
    reset_key: str | None = None
    reset_date: str | None = None
    public_key: str | None = None
    created_at: str | None = None
    authorities: set[str] = field(default_factory=set)
    group_ids: set[int] = field(default_factory=set)

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.authorities


@dataclass
class Group:
    """A named set of users. Categories authorize groups, never single users."""

    name: str
    id: int | None = None
    created_at: str | None = None
    member_ids: set[int] = field(default_factory=set)


@dataclass
class AccessToken:
    """An issued OAuth2 access token, tracked so it can be revoked by login.

    token_id is the JWT "jti" claim. A JWT whose token_id is no longer in the
    store is rejected even if its signature and expiry are valid.
    """

    token_id: str
    login: str
    issued_at: str
    expires_at: str
