"""
services/access.py -- Visibility resolver: who may see which key or category.

The rule is a set intersection, recomputed on every call (no cached ACL):

  A user may access a key when
    - the user holds ROLE_ADMIN, or
    - the key has a category and one of the category's authorized groups is
      also one of the user's groups, or
    - the key has no category and the user created it.

  A user may access a category when the user holds ROLE_ADMIN or the two
  group sets intersect. A category with no authorized groups is visible to
  admins only.

The User objects passed in must come from UserStore, which loads group ids
at read time. A stale User (held across a membership change) gives a stale
answer.

Layer rule: services/ may import from core/, auth/ and vault/. Never from
api/ or realtime/.
"""

from __future__ import annotations

from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from vault.models import Category, Key
from vault.store import VaultStore


class AccessResolver:
    """Answers access questions by looking up categories and group members."""

    def __init__(self, user_store: UserStore, vault_store: VaultStore) -> None:
        self._users = user_store
        self._vault = vault_store

    # ------------------------------------------------------------------
    # Single checks
    # ------------------------------------------------------------------

    def can_access(self, user: User, key: Key) -> bool:
        if user.is_admin:
            return True
        category = self._vault.get_category(key.category_id) if key.category_id is not None else None
        return self.would_access(user, category, key.creator_id)

    def can_access_category(self, user: User, category: Category) -> bool:
        if user.is_admin:
            return True
        return bool(category.group_ids & user.group_ids)

    def would_access(self, user: User, category: Category | None, creator_id: int | None) -> bool:
        """Access check for a key that may not exist yet.

        category is the key's (proposed) category, or None for an
        uncategorized key; creator_id is its (proposed) creator.
        """
        if user.is_admin:
            return True
        if category is None:
            return creator_id is not None and user.id == creator_id
        return bool(category.group_ids & user.group_ids)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def accessors_of(self, key: Key) -> list[User]:
        """Every user that can access key: admins, category group members,
        and the creator of an uncategorized key. Each user appears once."""
        found: dict[int, User] = {u.id: u for u in self._users.find_all_by_authority(ROLE_ADMIN)}
        if key.category_id is not None:
            category = self._vault.get_category(key.category_id)
            if category is not None:
                for member in self._users.members_of(category.group_ids):
                    found.setdefault(member.id, member)
        elif key.creator_id is not None and key.creator_id not in found:
            creator = self._users.get_by_id(key.creator_id)
            if creator is not None:
                found[creator.id] = creator
        return sorted(found.values(), key=lambda u: u.login)

    # ------------------------------------------------------------------
    # Filtered listings
    # ------------------------------------------------------------------

    def visible_categories(self, user: User) -> list[Category]:
        categories = self._vault.list_categories()
        if user.is_admin:
            return categories
        return [c for c in categories if c.group_ids & user.group_ids]

    def visible_keys(self, user: User) -> list[Key]:
        keys = self._vault.list_keys()
        if user.is_admin:
            return keys
        visible_ids = {c.id for c in self.visible_categories(user)}
        return [
            k
            for k in keys
            if (k.category_id in visible_ids) or (k.category_id is None and k.creator_id == user.id)
        ]
