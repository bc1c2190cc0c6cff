"""
tests/test_key_service.py -- Key lifecycle and encrypted-copy maintenance.

Covers:
  - create: all-or-nothing copy validation, category authorization
  - update: full copy replacement, re-validation without mutation on failure
  - delete / delete_all: copies removed, former accessors notified
  - get / get_all: admin NotFound vs non-admin None
  - get_encrypted_password, get_subscribers
  - pruning after a group membership change
"""

from __future__ import annotations

import pytest

from core.exceptions import (
    AccessDeniedError,
    CategoryNotFoundError,
    EncryptedPasswordNotFoundError,
    KeyNotAccessibleByUserError,
    KeyNotFoundError,
    UserNotFoundError,
)
from services.keys import KEY_DELETE, KEY_UPDATE


@pytest.fixture
def world(svc, new_user):
    """A (admin), B in group G, C outside; C1 authorized for G."""
    admin = new_user("alice", admin=True)
    new_user("bob")
    new_user("carol")
    group = svc.groups.create("G")
    svc.groups.add_user(group.id, "bob")
    category = svc.categories.create(admin, "C1")
    svc.categories.add_group(category.id, group.id)
    return {
        "admin": admin,
        "bob": svc.users.get_by_login("bob"),
        "carol": svc.users.get_by_login("carol"),
        "group": group,
        "category": svc.vault.get_category(category.id),
    }


class TestCreate:
    def test_member_creates_key_with_own_copy(self, svc, world) -> None:
        """B creates K1 in C1 with a copy for B; B can read it back."""
        bob = world["bob"]
        key = svc.keys.create(bob, "K1", category_id=world["category"].id, encrypted_passwords={"bob": "enc-b"})
        assert svc.keys.get(bob, key.id).name == "K1"
        assert svc.keys.get_encrypted_password(bob, key.id).encrypted_password == "enc-b"

    def test_copy_for_unauthorized_user_rejects_everything(self, svc, world) -> None:
        """A copy for a user without access fails the call; no key and no copies remain."""
        with pytest.raises(KeyNotAccessibleByUserError):
            svc.keys.create(
                world["admin"],
                "K1",
                category_id=world["category"].id,
                encrypted_passwords={"bob": "enc-b", "carol": "enc-c"},
            )
        assert svc.vault.list_keys() == []
        assert svc.vault.list_copies_for_owner(world["bob"].id) == []

    def test_unknown_recipient(self, svc, world) -> None:
        with pytest.raises(UserNotFoundError):
            svc.keys.create(world["admin"], "K1", encrypted_passwords={"nobody": "x"})
        assert svc.vault.list_keys() == []

    def test_non_admin_cannot_create_in_foreign_category(self, svc, world) -> None:
        """C is not in G, so creating a key in C1 is denied before anything is written."""
        with pytest.raises(AccessDeniedError):
            svc.keys.create(world["carol"], "K1", category_id=world["category"].id)
        assert svc.vault.list_keys() == []

    def test_unknown_category(self, svc, world) -> None:
        with pytest.raises(CategoryNotFoundError):
            svc.keys.create(world["admin"], "K1", category_id=4242)

    def test_uncategorized_copy_only_for_creator_and_admins(self, svc, world) -> None:
        """Without a category only the creator and admins may receive copies."""
        bob = world["bob"]
        key = svc.keys.create(bob, "solo", encrypted_passwords={"bob": "b", "alice": "a"})
        assert len(svc.vault.list_copies_for_key(key.id)) == 2
        with pytest.raises(KeyNotAccessibleByUserError):
            svc.keys.create(bob, "solo2", encrypted_passwords={"carol": "c"})

    def test_notifies_accessors(self, svc, world) -> None:
        """key-update goes to admins and category members, not to outsiders."""
        svc.keys.create(world["admin"], "K1", category_id=world["category"].id)
        assert svc.notifier.recipients(KEY_UPDATE) == {"alice", "bob"}
        login, topic, payload = svc.notifier.sent[0]
        assert payload["id"] == svc.codec.encode(svc.vault.list_keys()[0].id)
        assert payload["category"] == svc.codec.encode(world["category"].id)


class TestUpdate:
    def test_copies_fully_replaced(self, svc, world) -> None:
        """Updating a key's copy set removes copies not named in the new set."""
        admin = world["admin"]
        key = svc.keys.create(
            admin, "K1", category_id=world["category"].id, encrypted_passwords={"alice": "a1", "bob": "b1"}
        )
        svc.keys.update(admin, key.id, "K1 renamed", encrypted_passwords={"alice": "a2"})
        copies = svc.vault.list_copies_for_key(key.id)
        assert [(c.owner_id, c.encrypted_password) for c in copies] == [(admin.id, "a2")]
        assert svc.vault.get_key(key.id).name == "K1 renamed"

    def test_failed_validation_leaves_key_untouched(self, svc, world) -> None:
        admin = world["admin"]
        key = svc.keys.create(admin, "K1", category_id=world["category"].id, encrypted_passwords={"bob": "b1"})
        with pytest.raises(KeyNotAccessibleByUserError):
            svc.keys.update(admin, key.id, "changed", encrypted_passwords={"carol": "c"})
        assert svc.vault.get_key(key.id).name == "K1"
        assert [c.encrypted_password for c in svc.vault.list_copies_for_key(key.id)] == ["b1"]

    def test_actor_without_access_is_denied(self, svc, world) -> None:
        key = svc.keys.create(world["admin"], "K1", category_id=world["category"].id)
        with pytest.raises(AccessDeniedError):
            svc.keys.update(world["carol"], key.id, "hijack")

    def test_missing_key(self, svc, world) -> None:
        with pytest.raises(KeyNotFoundError):
            svc.keys.update(world["admin"], 999, "x")


class TestDelete:
    def test_delete_removes_copies_and_notifies(self, svc, world) -> None:
        """Deleting a key removes every copy referencing it and tells former accessors."""
        key = svc.keys.create(
            world["admin"], "K1", category_id=world["category"].id, encrypted_passwords={"bob": "b", "alice": "a"}
        )
        svc.notifier.sent.clear()
        svc.keys.delete(key.id)
        assert svc.vault.get_key(key.id) is None
        assert svc.vault.list_copies_for_key(key.id) == []
        assert svc.notifier.recipients(KEY_DELETE) == {"alice", "bob"}

    def test_delete_missing_key(self, svc, world) -> None:
        with pytest.raises(KeyNotFoundError):
            svc.keys.delete(12345)

    def test_delete_all(self, svc, world) -> None:
        svc.keys.create(world["admin"], "K1", encrypted_passwords={"alice": "a"})
        svc.keys.create(world["bob"], "K2", encrypted_passwords={"bob": "b"})
        svc.notifier.sent.clear()
        svc.keys.delete_all()
        assert svc.vault.list_keys() == []
        assert svc.vault.list_copies_for_owner(world["bob"].id) == []
        assert [t for _, t, _ in svc.notifier.sent] == [KEY_DELETE] * len(svc.notifier.sent)
        assert "bob" in svc.notifier.recipients(KEY_DELETE)


class TestReads:
    def test_admin_get_missing_raises(self, svc, world) -> None:
        with pytest.raises(KeyNotFoundError):
            svc.keys.get(world["admin"], 999)

    def test_non_admin_get_missing_and_forbidden_both_none(self, svc, world) -> None:
        """Missing and inaccessible keys look the same to a non-admin."""
        key = svc.keys.create(world["admin"], "K1", category_id=world["category"].id)
        assert svc.keys.get(world["carol"], key.id) is None
        assert svc.keys.get(world["carol"], 999) is None

    def test_get_all_hides_others_uncategorized_keys(self, svc, world) -> None:
        """K2 without category created by A is absent from B's listing."""
        svc.keys.create(world["admin"], "K2")
        assert svc.keys.get_all(world["bob"]) == []
        assert [k.name for k in svc.keys.get_all(world["admin"])] == ["K2"]

    def test_encrypted_password_requires_own_copy(self, svc, world) -> None:
        key = svc.keys.create(world["admin"], "K1", category_id=world["category"].id, encrypted_passwords={"alice": "a"})
        with pytest.raises(EncryptedPasswordNotFoundError):
            svc.keys.get_encrypted_password(world["bob"], key.id)
        with pytest.raises(EncryptedPasswordNotFoundError):
            svc.keys.get_encrypted_password(world["carol"], key.id)

    def test_subscribers_need_public_key(self, svc, world) -> None:
        """Only accessors with a registered public key are subscribers."""
        svc.accounts.set_public_key(world["bob"], "PUBKEY-B")
        key = svc.keys.create(world["admin"], "K1", category_id=world["category"].id)
        subs = svc.keys.get_subscribers(world["admin"], key.id)
        assert [(u.login, u.public_key) for u in subs] == [("bob", "PUBKEY-B")]

    def test_subscribers_denied_without_access(self, svc, world) -> None:
        key = svc.keys.create(world["admin"], "K1", category_id=world["category"].id)
        with pytest.raises(AccessDeniedError):
            svc.keys.get_subscribers(world["carol"], key.id)


class TestPruning:
    def test_leaving_group_prunes_copy(self, svc, world) -> None:
        """Removing B from G deletes B's copy of K1; the admin's copy survives."""
        bob = world["bob"]
        key = svc.keys.create(
            bob, "K1", category_id=world["category"].id, encrypted_passwords={"bob": "b", "alice": "a"}
        )
        svc.groups.remove_user(world["group"].id, "bob")
        owners = {c.owner_id for c in svc.vault.list_copies_for_key(key.id)}
        assert owners == {world["admin"].id}

    def test_admin_copies_never_pruned(self, svc, world) -> None:
        admin = world["admin"]
        key = svc.keys.create(admin, "K1", category_id=world["category"].id, encrypted_passwords={"alice": "a"})
        assert svc.keys.remove_obsolete_passwords(admin) == 0
        assert len(svc.vault.list_copies_for_key(key.id)) == 1

    def test_remove_obsolete_passwords_keeps_accessible(self, svc, world) -> None:
        bob = world["bob"]
        svc.keys.create(bob, "K1", category_id=world["category"].id, encrypted_passwords={"bob": "b"})
        svc.keys.create(bob, "solo", encrypted_passwords={"bob": "s"})
        assert svc.keys.remove_obsolete_passwords(svc.reload(bob)) == 0
        assert len(svc.vault.list_copies_for_owner(bob.id)) == 2
