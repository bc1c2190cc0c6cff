"""
services/users.py -- Registration, activation, password reset and deletion.

Logins are derived from the local part of the email address, lowercased.
Changing a user's email therefore changes the login too, which is why an
email change deactivates the user and revokes every token issued under the
old login.

Deleting a user dissolves every reference first: categories and keys the
user created are handed to the root user (Settings.root_login), category
responsibility is cleared, group memberships and encrypted copies go away.
The root user itself cannot be deleted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import generate_random_key, hash_password, revoke_tokens
from core.exceptions import (
    ActivationKeyNotFoundError,
    AuthorityNotFoundError,
    ConflictError,
    ResetKeyNotFoundError,
    UserConflictError,
    UserNotFoundError,
)
from services.keys import KeyService
from vault.store import VaultStore

logger = logging.getLogger("keyshare.users")


def login_from_email(email: str) -> str:
    return email.split("@", 1)[0].lower()


class UserService:
    """Application service for the user directory."""

    def __init__(
        self,
        user_store: UserStore,
        vault_store: VaultStore,
        keys: KeyService,
        root_login: str = "root",
    ) -> None:
        self._users = user_store
        self._vault = vault_store
        self._keys = keys
        self._root_login = root_login

    # ------------------------------------------------------------------
    # Registration and activation
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create an inactive ROLE_USER account with a fresh activation key.

        Raises UserConflictError when the email, or the login derived from
        it, is already taken.
        """
        email = email.lower()
        login = login_from_email(email)
        self._require_unique(email, login)
        user = User(
            login=login,
            email=email,
            first_name=first_name,
            last_name=last_name,
            hashed_password=hash_password(password),
            activation_key=generate_random_key(),
            authorities={ROLE_USER},
        )
        user_id = self._users.create_user(user)
        logger.debug("Registered user %s", login)
        return self._users.get_by_id(user_id)

    def create_root(self, email: str, password: str) -> User:
        """Create the activated admin account named by root_login."""
        email = email.lower()
        self._require_unique(email, self._root_login)
        user = User(
            login=self._root_login,
            email=email,
            hashed_password=hash_password(password),
            activated=True,
            authorities={ROLE_ADMIN, ROLE_USER},
        )
        user_id = self._users.create_user(user)
        logger.info("Created root user %s", self._root_login)
        return self._users.get_by_id(user_id)

    def activate(self, activation_key: str) -> User:
        user = self._users.get_by_activation_key(activation_key)
        if user is None:
            raise ActivationKeyNotFoundError()
        self._users.update_user(user.id, activated=True, activation_key=None)
        logger.debug("Activated user %s", user.login)
        return self._users.get_by_id(user.id)

    def deactivate(self, login: str) -> User:
        user = self.get(login)
        self._users.update_user(user.id, activated=False, activation_key=generate_random_key())
        revoke_tokens(self._users, login)
        logger.debug("Deactivated user %s", login)
        return self._users.get_by_id(user.id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def generate_password_reset_key(self, email: str) -> str:
        """Issue a reset key for an activated user and return it.

        Raises UserNotFoundError for unknown or inactive users and
        UserConflictError when a reset is already pending.
        """
        user = self._users.get_by_email(email)
        if user is None or not user.activated:
            raise UserNotFoundError()
        if user.reset_key is not None:
            raise UserConflictError("A password reset key has already been generated.")
        reset_key = generate_random_key()
        self._users.update_user(
            user.id,
            reset_key=reset_key,
            reset_date=datetime.now(timezone.utc).isoformat(),
        )
        logger.debug("Generated reset key for %s", user.login)
        return reset_key

    def reset_password(self, new_password: str, reset_key: str) -> User:
        user = self._users.get_by_reset_key(reset_key)
        if user is None:
            raise ResetKeyNotFoundError()
        self._users.update_user(
            user.id,
            hashed_password=hash_password(new_password),
            reset_key=None,
            reset_date=None,
        )
        logger.debug("Password reset for %s", user.login)
        return self._users.get_by_id(user.id)

    # ------------------------------------------------------------------
    # Profile and authorities
    # ------------------------------------------------------------------

    def update(
        self,
        login: str,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Update profile fields. An email change re-derives the login,
        deactivates the account and revokes its tokens."""
        user = self.get(login)
        fields: dict = {}
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name
        if email is not None and email.lower() != user.email:
            email = email.lower()
            new_login = login_from_email(email)
            self._require_unique(email, new_login, ignore_id=user.id)
            revoke_tokens(self._users, user.login)
            fields.update(
                email=email,
                login=new_login,
                activated=False,
                activation_key=generate_random_key(),
            )
            logger.debug("Email of %s changed; login is now %s", login, new_login)
        if fields:
            self._users.update_user(user.id, **fields)
        return self._users.get_by_id(user.id)

    def update_authorities(self, login: str, names: Iterable[str]) -> User:
        user = self.get(login)
        names = set(names)
        for name in names:
            if self._users.get_authority(name) is None:
                raise AuthorityNotFoundError(f"Authority {name!r} not found.")
        self._users.set_authorities(user.id, names)
        revoke_tokens(self._users, login)
        updated = self._users.get_by_id(user.id)
        # A demoted admin loses copies of keys only admins could see.
        self._keys.remove_obsolete_passwords(updated)
        logger.debug("Authorities of %s set to %s", login, sorted(names))
        return updated

    def set_public_key(self, actor: User, public_key: str | None) -> User:
        self._users.update_user(actor.id, public_key=public_key)
        return self._users.get_by_id(actor.id)

    # ------------------------------------------------------------------
    # Deletion and reads
    # ------------------------------------------------------------------

    def delete(self, login: str) -> None:
        if login == self._root_login:
            raise ConflictError("The root user cannot be deleted.")
        user = self.get(login)
        revoke_tokens(self._users, login)
        self._dissolve_references(user)
        self._users.delete_user(user.id)
        logger.debug("Deleted user %s", login)

    def get(self, login: str) -> User:
        user = self._users.get_by_login(login)
        if user is None:
            raise UserNotFoundError()
        return user

    def get_all(self) -> list[User]:
        return self._users.list_users()

    def get_authority(self, name: str) -> str:
        authority = self._users.get_authority(name)
        if authority is None:
            raise AuthorityNotFoundError()
        return authority

    def get_authorities(self) -> list[str]:
        return self._users.list_authorities()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_unique(self, email: str, login: str, ignore_id: int | None = None) -> None:
        existing = self._users.get_by_email(email)
        if existing is not None and existing.id != ignore_id:
            raise UserConflictError(f"Email {email!r} already exists.")
        existing = self._users.get_by_login(login)
        if existing is not None and existing.id != ignore_id:
            raise UserConflictError(f"Login {login!r} already exists.")

    def _dissolve_references(self, user: User) -> None:
        root = self._users.get_by_login(self._root_login)
        heir_id = root.id if root is not None else None
        created_keys = [k.id for k in self._vault.list_keys() if k.creator_id == user.id]
        self._vault.reassign_category_creator(user.id, heir_id)
        self._vault.reassign_key_creator(user.id, heir_id)
        self._vault.clear_responsible(user.id)
        for group_id in user.group_ids:
            self._users.remove_member(group_id, user.id)
        self._keys.remove_all_encrypted_passwords_for_user(user.id)
        # Uncategorized keys changed hands; their old recipients may be out.
        self._keys.prune_keys(created_keys)
