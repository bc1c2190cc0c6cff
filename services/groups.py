"""
services/groups.py -- User group management.

Groups live in the auth database; their authorizations on categories live in
the vault database. Deleting a group touches both, then prunes the copies of
every former member. The two stores are separate databases, so the sequence
is not atomic; a crash between steps leaves copies that the next prune
removes.
"""

from __future__ import annotations

import logging

from auth.models import Group, User
from auth.store import UserStore
from core.exceptions import GroupConflictError, GroupNotFoundError, UserNotFoundError
from services.keys import KeyService
from vault.store import VaultStore

logger = logging.getLogger("keyshare.groups")


class GroupService:
    """Application service for user groups and their memberships."""

    def __init__(self, user_store: UserStore, vault_store: VaultStore, keys: KeyService) -> None:
        self._users = user_store
        self._vault = vault_store
        self._keys = keys

    def create(self, name: str) -> Group:
        if self._users.get_group_by_name(name) is not None:
            raise GroupConflictError(f"A group named {name!r} already exists.")
        group_id = self._users.create_group(Group(name=name))
        logger.debug("Group %d (%s) created", group_id, name)
        return self._users.get_group(group_id)

    def get(self, group_id: int) -> Group:
        group = self._users.get_group(group_id)
        if group is None:
            raise GroupNotFoundError()
        return group

    def get_all(self) -> list[Group]:
        return self._users.list_groups()

    def members(self, group_id: int) -> list[User]:
        return self._users.members_of([self.get(group_id).id])

    def rename(self, group_id: int, name: str) -> Group:
        group = self.get(group_id)
        other = self._users.get_group_by_name(name)
        if other is not None and other.id != group.id:
            raise GroupConflictError(f"A group named {name!r} already exists.")
        self._users.rename_group(group_id, name)
        return self._users.get_group(group_id)

    def delete(self, group_id: int) -> None:
        """Delete a group, drop it from every category and prune its members."""
        group = self.get(group_id)
        self._vault.remove_group_everywhere(group_id)
        self._users.delete_group(group_id)
        self._prune_members(group.member_ids)
        logger.debug("Group %d deleted, %d former members pruned", group_id, len(group.member_ids))

    def delete_all(self) -> None:
        member_ids: set[int] = set()
        for group in self._users.list_groups():
            member_ids |= group.member_ids
        self._vault.clear_category_groups()
        self._users.delete_all_groups()
        self._prune_members(member_ids)

    def add_user(self, group_id: int, login: str) -> Group:
        self.get(group_id)
        user = self._user(login)
        self._users.add_member(group_id, user.id)
        return self._users.get_group(group_id)

    def remove_user(self, group_id: int, login: str) -> Group:
        """Remove a user from a group and prune the copies the user lost."""
        self.get(group_id)
        user = self._user(login)
        if self._users.remove_member(group_id, user.id):
            # Reload so the pruning sees the reduced membership.
            self._keys.remove_obsolete_passwords(self._users.get_by_id(user.id))
        return self._users.get_group(group_id)

    def _user(self, login: str) -> User:
        user = self._users.get_by_login(login)
        if user is None:
            raise UserNotFoundError()
        return user

    def _prune_members(self, member_ids: set[int]) -> None:
        for user in self._users.list_users_by_ids(member_ids):
            self._keys.remove_obsolete_passwords(user)
