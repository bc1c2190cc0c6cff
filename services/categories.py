"""
services/categories.py -- Category tree maintenance.

Invariants kept here:
  - level == 0 for roots, parent.level + 1 otherwise, for every node after
    every operation (moves recompute the whole moved subtree).
  - no cycles: a node can never be moved below itself or a descendant.

Anything that can shrink who may see a key (removing a group, moving a key
out, deleting a category) ends with KeyService.prune_key_copies for the
affected keys.
"""

from __future__ import annotations

import logging

from auth.models import User
from auth.store import UserStore
from core.exceptions import (
    AccessDeniedError,
    CategoryNotFoundError,
    CategoryTreeConflictError,
    GroupNotFoundError,
    KeyNotFoundError,
    UserNotFoundError,
)
from services.access import AccessResolver
from services.keys import KeyService
from vault.models import Category, Key
from vault.store import VaultStore

logger = logging.getLogger("keyshare.categories")


class CategoryService:
    """Application service for the key category tree."""

    def __init__(
        self,
        vault_store: VaultStore,
        user_store: UserStore,
        resolver: AccessResolver,
        keys: KeyService,
    ) -> None:
        self._vault = vault_store
        self._users = user_store
        self._resolver = resolver
        self._keys = keys

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, actor: User, name: str, parent_id: int | None = None) -> Category:
        level = 0
        if parent_id is not None:
            parent = self._require(parent_id)
            level = parent.level + 1
        category_id = self._vault.create_category(
            Category(name=name, parent_id=parent_id, level=level, creator_id=actor.id)
        )
        logger.debug("Category %d (%s) created by %s", category_id, name, actor.login)
        return self._vault.get_category(category_id)

    def get(self, actor: User, category_id: int) -> Category | None:
        """Same disclosure rule as KeyService.get: None for non-admins."""
        category = self._vault.get_category(category_id)
        if actor.is_admin:
            if category is None:
                raise CategoryNotFoundError()
            return category
        if category is None or not self._resolver.can_access_category(actor, category):
            return None
        return category

    def get_all(self, actor: User) -> list[Category]:
        return self._resolver.visible_categories(actor)

    def children(self, actor: User, category_id: int) -> list[Category]:
        self._require_visible(actor, category_id)
        return [c for c in self._vault.list_children(category_id) if self._resolver.can_access_category(actor, c)]

    def keys_of(self, actor: User, category_id: int) -> list[Key]:
        self._require_visible(actor, category_id)
        return [k for k in self._vault.list_keys_in_category(category_id) if self._resolver.can_access(actor, k)]

    def update(self, category_id: int, name: str) -> Category:
        self._require(category_id)
        self._vault.update_category(category_id, name=name)
        return self._vault.get_category(category_id)

    def delete(self, category_id: int) -> None:
        """Delete a category, lifting its keys and children one level up.

        For a root the keys become uncategorized and the children become
        roots. Copies of the moved keys are pruned afterwards.
        """
        category = self._require(category_id)
        # Lifted children take the deleted node's place in the tree.
        levels: dict[int, int] = {}
        for child in self._vault.list_children(category_id):
            levels.update(self._subtree_levels(child.id, category.level))
        moved_keys = self._vault.remove_category(category_id, category.parent_id, levels)
        self._keys.prune_keys(moved_keys)
        for key in self._vault.list_keys_by_ids(moved_keys):
            self._keys.notify_update(key)
        logger.debug("Category %d deleted, %d keys moved", category_id, len(moved_keys))

    def delete_all(self) -> None:
        moved_keys = self._vault.remove_all_categories()
        self._keys.prune_keys(moved_keys)
        for key in self._vault.list_keys_by_ids(moved_keys):
            self._keys.notify_update(key)
        logger.debug("All categories deleted, %d keys uncategorized", len(moved_keys))

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def add_child(self, parent_id: int, child_id: int) -> Category:
        """Attach child_id below parent_id. Returns the updated parent."""
        self.move(child_id, parent_id)
        return self._vault.get_category(parent_id)

    def move(self, category_id: int, new_parent_id: int | None) -> Category:
        """Reparent a category; None makes it a root.

        Raises CategoryTreeConflictError if new_parent_id is the category
        itself or one of its descendants.
        """
        category = self._require(category_id)
        new_level = 0
        if new_parent_id is not None:
            parent = self._require(new_parent_id)
            if category_id in self._ancestry(parent):
                raise CategoryTreeConflictError()
            new_level = parent.level + 1
        self._vault.move_category(category.id, new_parent_id, self._subtree_levels(category.id, new_level))
        logger.debug("Category %d moved below %s", category_id, new_parent_id)
        return self._vault.get_category(category_id)

    # ------------------------------------------------------------------
    # Keys, groups, responsible
    # ------------------------------------------------------------------

    def add_key(self, category_id: int, key_id: int) -> Category:
        category = self._require(category_id)
        key = self._vault.get_key(key_id)
        if key is None:
            raise KeyNotFoundError()
        self._vault.set_key_category(key_id, category_id)
        self._keys.prune_key_copies(key_id)
        self._keys.notify_update(self._vault.get_key(key_id))
        return category

    def remove_key(self, category_id: int, key_id: int) -> Category:
        category = self._require(category_id)
        key = self._vault.get_key(key_id)
        if key is None or key.category_id != category_id:
            raise KeyNotFoundError("Key not found in this category.")
        self._vault.set_key_category(key_id, None)
        self._keys.prune_key_copies(key_id)
        self._keys.notify_update(self._vault.get_key(key_id))
        return category

    def add_group(self, category_id: int, group_id: int) -> Category:
        self._require(category_id)
        if self._users.get_group(group_id) is None:
            raise GroupNotFoundError()
        self._vault.add_category_group(category_id, group_id)
        return self._vault.get_category(category_id)

    def remove_group(self, category_id: int, group_id: int) -> Category:
        self._require(category_id)
        if self._users.get_group(group_id) is None:
            raise GroupNotFoundError()
        if self._vault.remove_category_group(category_id, group_id):
            keys = self._vault.list_keys_in_category(category_id)
            self._keys.prune_keys(k.id for k in keys)
        return self._vault.get_category(category_id)

    def set_responsible(self, category_id: int, login: str | None) -> Category:
        self._require(category_id)
        responsible_id = None
        if login is not None:
            user = self._users.get_by_login(login)
            if user is None:
                raise UserNotFoundError()
            responsible_id = user.id
        self._vault.update_category(category_id, responsible_id=responsible_id)
        return self._vault.get_category(category_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, category_id: int) -> Category:
        category = self._vault.get_category(category_id)
        if category is None:
            raise CategoryNotFoundError()
        return category

    def _require_visible(self, actor: User, category_id: int) -> Category:
        """Like get(): a non-admin cannot tell a missing category from a hidden one."""
        category = self.get(actor, category_id)
        if category is None:
            logger.info("User %s denied category %d", actor.login, category_id)
            raise AccessDeniedError("You are not authorized for this category.")
        return category

    def _ancestry(self, category: Category) -> set[int]:
        """ids of category and all its ancestors."""
        seen: set[int] = set()
        current: Category | None = category
        while current is not None and current.id not in seen:
            seen.add(current.id)
            current = self._vault.get_category(current.parent_id) if current.parent_id is not None else None
        return seen

    def _subtree_levels(self, category_id: int, level: int) -> dict[int, int]:
        """category_id at level, every descendant at its depth below it."""
        levels: dict[int, int] = {}
        pending = [(category_id, level)]
        while pending:
            node_id, node_level = pending.pop()
            levels[node_id] = node_level
            for child in self._vault.list_children(node_id):
                if child.id not in levels:
                    pending.append((child.id, node_level + 1))
        return levels
