"""
vault/models.py -- Domain dataclasses for categories, keys and encrypted copies.

Pattern: Data class (pure data container, zero logic).

All cross-entity links are integer id columns. creator_id / responsible_id /
owner_id refer to rows in the auth database; group_ids refers to user groups
in the same place. Nothing here holds a reference to another entity object,
so a Category's children and a Key's copies are always fetched through
VaultStore.

Layer rule: no imports from api/, auth/, services/, or realtime/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Category:
    """A node in the key category tree.

    level is 0 for roots and parent.level + 1 otherwise. Keys placed in a
    category are visible to members of any group in group_ids.
    """

    name: str
    id: int | None = None
    parent_id: int | None = None
    level: int = 0
    creator_id: int | None = None
    responsible_id: int | None = None
    created_at: str | None = None
    group_ids: set[int] = field(default_factory=set)


@dataclass
class Key:
    """A shared credential record. The secret itself only exists as copies."""

    name: str
    id: int | None = None
    login: str | None = None
    notes: str | None = None
    creator_id: int | None = None
    category_id: int | None = None
    created_at: str | None = None


@dataclass
class EncryptedPassword:
    """One recipient's copy of a key's secret, encrypted client-side.

    encrypted_password is opaque to the server.
    """

    owner_id: int
    key_id: int
    encrypted_password: str
    id: int | None = None
    created_at: str | None = None
