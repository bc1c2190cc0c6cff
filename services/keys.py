"""
services/keys.py -- Key lifecycle and encrypted-copy maintenance.

Create and update are all-or-nothing: every requested copy is validated
(recipient exists, recipient would be able to access the key) before
VaultStore writes anything, and the write itself is one transaction.

Copies are pruned reactively. Whenever authorization shrinks (a user leaves a
group, a group is taken off a category, a key changes category, a category is
deleted) the caller invokes remove_obsolete_passwords() or prune_key_copies()
and copies whose owner can no longer access the key are deleted. Admin-owned
copies are never pruned.

Notifications go out after the write commits, one message per accessor,
through the injected Notifier. Delivery problems never reach the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from auth.models import User
from auth.store import UserStore
from core.exceptions import (
    AccessDeniedError,
    CategoryNotFoundError,
    EncryptedPasswordNotFoundError,
    KeyNotAccessibleByUserError,
    KeyNotFoundError,
    UserNotFoundError,
)
from core.hashid import IdCodec
from services.access import AccessResolver
from vault.models import Category, EncryptedPassword, Key
from vault.store import VaultStore

logger = logging.getLogger("keyshare.keys")

KEY_UPDATE = "key-update"
KEY_DELETE = "key-delete"


class Notifier(Protocol):
    """Delivers a message to one user's update channel. Must not raise."""

    def send(self, login: str, topic: str, payload: dict) -> None: ...


class NullNotifier:
    """Notifier that drops every message (CLI, scripts)."""

    def send(self, login: str, topic: str, payload: dict) -> None:
        return None


class KeyService:
    """Application service for keys and their per-user encrypted copies."""

    def __init__(
        self,
        vault_store: VaultStore,
        user_store: UserStore,
        resolver: AccessResolver,
        codec: IdCodec,
        notifier: Notifier | None = None,
    ) -> None:
        self._vault = vault_store
        self._users = user_store
        self._resolver = resolver
        self._codec = codec
        self._notifier = notifier or NullNotifier()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        actor: User,
        name: str,
        login: str | None = None,
        notes: str | None = None,
        category_id: int | None = None,
        encrypted_passwords: Mapping[str, str] | None = None,
    ) -> Key:
        """Create a key with one encrypted copy per entry of encrypted_passwords.

        Args:
            actor:               The creating user; becomes the key's creator.
            category_id:         Internal id of the target category, or None.
            encrypted_passwords: Recipient login -> ciphertext.

        Raises:
            CategoryNotFoundError:       category_id does not exist.
            AccessDeniedError:           a non-admin actor cannot access the category.
            UserNotFoundError:           a recipient login does not exist.
            KeyNotAccessibleByUserError: a recipient would not be able to access the key.
        """
        category = None
        if category_id is not None:
            category = self._vault.get_category(category_id)
            if category is None:
                raise CategoryNotFoundError()
            if not self._resolver.can_access_category(actor, category):
                logger.info("User %s denied key creation in category %d", actor.login, category_id)
                raise AccessDeniedError("You are not authorized for this category.")

        copies = self._build_copies(encrypted_passwords or {}, category, actor.id)
        key = Key(name=name, login=login, notes=notes, creator_id=actor.id, category_id=category_id)
        key_id = self._vault.create_key(key, copies)
        created = self._vault.get_key(key_id)
        logger.debug("Key %d created by %s with %d copies", key_id, actor.login, len(copies))
        self.notify_update(created)
        return created

    def update(
        self,
        actor: User,
        key_id: int,
        name: str,
        login: str | None = None,
        notes: str | None = None,
        encrypted_passwords: Mapping[str, str] | None = None,
    ) -> Key:
        """Update a key's fields and fully replace its encrypted copies.

        The key keeps its category; category changes go through
        CategoryService.add_key / remove_key.
        """
        key = self._vault.get_key(key_id)
        if key is None:
            raise KeyNotFoundError()
        if not self._resolver.can_access(actor, key):
            logger.info("User %s denied update of key %d", actor.login, key_id)
            raise AccessDeniedError()

        category = self._vault.get_category(key.category_id) if key.category_id is not None else None
        copies = self._build_copies(encrypted_passwords or {}, category, key.creator_id)
        self._vault.update_key(key_id, name=name, login=login, notes=notes, copies=copies)
        updated = self._vault.get_key(key_id)
        logger.debug("Key %d updated by %s with %d copies", key_id, actor.login, len(copies))
        self.notify_update(updated)
        return updated

    def delete(self, key_id: int) -> None:
        """Delete a key with all its copies and tell former accessors."""
        key = self._vault.get_key(key_id)
        if key is None:
            raise KeyNotFoundError()
        accessors = self._resolver.accessors_of(key)
        self._vault.delete_key(key_id)
        logger.debug("Key %d deleted", key_id)
        self.notify_delete(key, accessors)

    def delete_all(self) -> None:
        pending = [(key, self._resolver.accessors_of(key)) for key in self._vault.list_keys()]
        self._vault.delete_all_keys()
        logger.debug("All %d keys deleted", len(pending))
        for key, accessors in pending:
            self.notify_delete(key, accessors)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, actor: User, key_id: int) -> Key | None:
        """Return the key if actor may see it.

        Admins get KeyNotFoundError for a missing key. Everyone else gets None
        for both missing and inaccessible keys, so existence does not leak.
        """
        key = self._vault.get_key(key_id)
        if actor.is_admin:
            if key is None:
                raise KeyNotFoundError()
            return key
        if key is None or not self._resolver.can_access(actor, key):
            return None
        return key

    def get_all(self, actor: User) -> list[Key]:
        return self._resolver.visible_keys(actor)

    def get_encrypted_password(self, actor: User, key_id: int) -> EncryptedPassword:
        key = self._vault.get_key(key_id)
        if key is None or not self._resolver.can_access(actor, key):
            raise EncryptedPasswordNotFoundError()
        copy = self._vault.get_copy(key_id, actor.id)
        if copy is None:
            raise EncryptedPasswordNotFoundError()
        return copy

    def get_subscribers(self, actor: User, key_id: int) -> list[User]:
        """Accessors of the key that registered a public key."""
        key = self.get(actor, key_id)
        if key is None:
            raise AccessDeniedError()
        return [u for u in self._resolver.accessors_of(key) if u.public_key]

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def remove_obsolete_passwords(self, user: User) -> int:
        """Delete every copy owned by user whose key user can no longer access.

        Pass a freshly loaded User; membership changes are only visible after
        a reload from UserStore. Returns the number of copies removed.
        """
        if user.is_admin:
            return 0
        obsolete = []
        for copy in self._vault.list_copies_for_owner(user.id):
            key = self._vault.get_key(copy.key_id)
            if key is None or not self._resolver.can_access(user, key):
                obsolete.append(copy.id)
        removed = self._vault.delete_copies(obsolete)
        if removed:
            logger.debug("Pruned %d obsolete copies of %s", removed, user.login)
        return removed

    def prune_key_copies(self, key_id: int) -> int:
        """Delete copies of one key whose owners lost access to it."""
        key = self._vault.get_key(key_id)
        if key is None:
            return 0
        category = self._vault.get_category(key.category_id) if key.category_id is not None else None
        obsolete = []
        for copy in self._vault.list_copies_for_key(key_id):
            owner = self._users.get_by_id(copy.owner_id)
            if owner is None or not self._resolver.would_access(owner, category, key.creator_id):
                obsolete.append(copy.id)
        removed = self._vault.delete_copies(obsolete)
        if removed:
            logger.debug("Pruned %d copies of key %d", removed, key_id)
        return removed

    def prune_keys(self, key_ids) -> int:
        return sum(self.prune_key_copies(key_id) for key_id in key_ids)

    def remove_all_encrypted_passwords_for_user(self, user_id: int) -> int:
        return self._vault.delete_copies_for_owner(user_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify_update(self, key: Key) -> None:
        payload = self.key_payload(key)
        for user in self._resolver.accessors_of(key):
            self._notifier.send(user.login, KEY_UPDATE, payload)

    def notify_delete(self, key: Key, accessors: list[User]) -> None:
        payload = {"id": self._codec.encode(key.id)}
        for user in accessors:
            self._notifier.send(user.login, KEY_DELETE, payload)

    def key_payload(self, key: Key) -> dict:
        return {
            "id": self._codec.encode(key.id),
            "name": key.name,
            "login": key.login,
            "notes": key.notes,
            "category": self._codec.encode(key.category_id) if key.category_id is not None else None,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_copies(
        self,
        encrypted_passwords: Mapping[str, str],
        category: Category | None,
        creator_id: int | None,
    ) -> list[EncryptedPassword]:
        """Validate every recipient before anything is written."""
        copies = []
        for login, ciphertext in encrypted_passwords.items():
            recipient = self._users.get_by_login(login)
            if recipient is None:
                raise UserNotFoundError(f"User {login!r} not found.")
            if not self._resolver.would_access(recipient, category, creator_id):
                logger.info("Rejected encrypted copy for %s without access", login)
                raise KeyNotAccessibleByUserError(f"User {login!r} cannot access this key.")
            copies.append(EncryptedPassword(owner_id=recipient.id, key_id=0, encrypted_password=ciphertext))
        return copies
