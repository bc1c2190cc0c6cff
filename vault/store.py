"""
vault/store.py -- SQLAlchemy-backed persistence for categories, keys and copies.

Uses SQLAlchemy Core (not ORM) so the dataclasses in vault/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. VaultStore is the repository; the _row_to_*
functions are the mappers. Services never touch SQL directly.

Transactions:
  Multi-row key mutations (create with copies, update with copy replacement,
  delete with copies) and category removal each run inside a single
  engine.begin() block, so a failure leaves no partial state behind.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = VaultStore()
    cat_id = store.create_category(Category(name="Servers", creator_id=1))
    key_id = store.create_key(Key(name="db", creator_id=1, category_id=cat_id),
                              [EncryptedPassword(owner_id=1, key_id=0,
                                                 encrypted_password="...")])
    store.close()

Layer rule: no imports from api/, auth/, services/, or realtime/.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine

from vault.models import Category, EncryptedPassword, Key

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'keyshare_vault.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_categories = Table(
    "key_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("parent_id", Integer, index=True),
    Column("tree_level", Integer, nullable=False, server_default="0"),
    Column("creator_id", Integer),
    Column("responsible_id", Integer),
    Column("created_at", String(32), nullable=False),
)

_category_groups = Table(
    "key_category_groups",
    metadata,
    Column("category_id", Integer, nullable=False),
    Column("group_id", Integer, nullable=False),
    UniqueConstraint("category_id", "group_id", name="uq_category_group"),
)

_keys = Table(
    "keys",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("login", String(255)),
    Column("notes", Text),
    Column("creator_id", Integer),
    Column("category_id", Integer, index=True),
    Column("created_at", String(32), nullable=False),
)

_copies = Table(
    "user_encrypted_passwords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("key_id", Integer, nullable=False, index=True),
    Column("encrypted_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("owner_id", "key_id", name="uq_copy_owner_key"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. SQLite PRAGMAs are per-connection."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VaultStore:
    """Repository for Category, Key and EncryptedPassword entities."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def create_category(self, category: Category) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _categories.insert().values(
                    name=category.name,
                    parent_id=category.parent_id,
                    tree_level=category.level,
                    creator_id=category.creator_id,
                    responsible_id=category.responsible_id,
                    created_at=_now_iso(),
                )
            )
            category_id = result.inserted_primary_key[0]
            for group_id in sorted(category.group_ids):
                conn.execute(_category_groups.insert().values(category_id=category_id, group_id=group_id))
        return category_id

    def get_category(self, category_id: int) -> Category | None:
        with self.engine.connect() as conn:
            row = conn.execute(_categories.select().where(_categories.c.id == category_id)).fetchone()
            if row is None:
                return None
            return _hydrate_categories(conn, [row])[0]

    def list_categories(self) -> list[Category]:
        """Return every category ordered by tree level, then name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _categories.select().order_by(_categories.c.tree_level, _categories.c.name, _categories.c.id)
            ).fetchall()
            return _hydrate_categories(conn, rows)

    def list_children(self, category_id: int) -> list[Category]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _categories.select().where(_categories.c.parent_id == category_id).order_by(_categories.c.name)
            ).fetchall()
            return _hydrate_categories(conn, rows)

    def update_category(self, category_id: int, **fields) -> bool:
        """Update mutable columns on a category.

        Accepted fields: name, parent_id, level, creator_id, responsible_id.
        Returns True if a row was updated, False if category_id was not found.
        """
        if "level" in fields:
            fields["tree_level"] = fields.pop("level")
        with self.engine.connect() as conn:
            result = conn.execute(_categories.update().where(_categories.c.id == category_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def move_category(self, category_id: int, new_parent_id: int | None, levels: dict[int, int]) -> None:
        """Reparent a category and write the recomputed levels of its subtree.

        Both happen in one transaction so the tree never shows the new parent
        with the old levels.
        """
        with self.engine.begin() as conn:
            conn.execute(_categories.update().where(_categories.c.id == category_id).values(parent_id=new_parent_id))
            _write_levels(conn, levels)

    def add_category_group(self, category_id: int, group_id: int) -> bool:
        """Authorize a group on a category. Returns False if already authorized."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_category_groups.c.group_id).where(
                    (_category_groups.c.category_id == category_id) & (_category_groups.c.group_id == group_id)
                )
            ).fetchone()
            if exists is not None:
                return False
            conn.execute(_category_groups.insert().values(category_id=category_id, group_id=group_id))
        return True

    def remove_category_group(self, category_id: int, group_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _category_groups.delete().where(
                    (_category_groups.c.category_id == category_id) & (_category_groups.c.group_id == group_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def remove_group_everywhere(self, group_id: int) -> list[int]:
        """Drop a group from every category. Returns the affected category ids."""
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(_category_groups.c.category_id).where(_category_groups.c.group_id == group_id)
            ).fetchall()
            conn.execute(_category_groups.delete().where(_category_groups.c.group_id == group_id))
        return [r.category_id for r in rows]

    def clear_category_groups(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(_category_groups.delete())
            conn.commit()

    def remove_category(
        self, category_id: int, new_parent_id: int | None, levels: dict[int, int] | None = None
    ) -> list[int]:
        """Delete a category, handing its keys and children to new_parent_id.

        levels holds the recomputed tree levels of the reparented subtrees and
        is written in the same transaction. Returns the ids of the keys that
        changed category.
        """
        with self.engine.begin() as conn:
            key_rows = conn.execute(select(_keys.c.id).where(_keys.c.category_id == category_id)).fetchall()
            conn.execute(_keys.update().where(_keys.c.category_id == category_id).values(category_id=new_parent_id))
            conn.execute(
                _categories.update().where(_categories.c.parent_id == category_id).values(parent_id=new_parent_id)
            )
            conn.execute(_category_groups.delete().where(_category_groups.c.category_id == category_id))
            conn.execute(_categories.delete().where(_categories.c.id == category_id))
            _write_levels(conn, levels or {})
        return [r.id for r in key_rows]

    def remove_all_categories(self) -> list[int]:
        """Delete every category and uncategorize every key. Returns affected key ids."""
        with self.engine.begin() as conn:
            key_rows = conn.execute(select(_keys.c.id).where(_keys.c.category_id.is_not(None))).fetchall()
            conn.execute(_keys.update().values(category_id=None))
            conn.execute(_category_groups.delete())
            conn.execute(_categories.delete())
        return [r.id for r in key_rows]

    def reassign_category_creator(self, old_creator_id: int, new_creator_id: int | None) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _categories.update()
                .where(_categories.c.creator_id == old_creator_id)
                .values(creator_id=new_creator_id)
            )
            conn.commit()

    def clear_responsible(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _categories.update().where(_categories.c.responsible_id == user_id).values(responsible_id=None)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def create_key(self, key: Key, copies: Iterable[EncryptedPassword] = ()) -> int:
        """Insert a key and its encrypted copies in one transaction.

        key_id on the passed copies is ignored; the new key's id is used.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _keys.insert().values(
                    name=key.name,
                    login=key.login,
                    notes=key.notes,
                    creator_id=key.creator_id,
                    category_id=key.category_id,
                    created_at=_now_iso(),
                )
            )
            key_id = result.inserted_primary_key[0]
            _insert_copies(conn, key_id, copies)
        return key_id

    def update_key(
        self,
        key_id: int,
        name: str,
        login: str | None,
        notes: str | None,
        copies: Iterable[EncryptedPassword],
    ) -> bool:
        """Update a key's fields and fully replace its copies in one transaction."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _keys.update().where(_keys.c.id == key_id).values(name=name, login=login, notes=notes)
            )
            if result.rowcount == 0:
                return False
            conn.execute(_copies.delete().where(_copies.c.key_id == key_id))
            _insert_copies(conn, key_id, copies)
        return True

    def get_key(self, key_id: int) -> Key | None:
        with self.engine.connect() as conn:
            row = conn.execute(_keys.select().where(_keys.c.id == key_id)).fetchone()
        return _row_to_key(row) if row is not None else None

    def list_keys(self) -> list[Key]:
        with self.engine.connect() as conn:
            rows = conn.execute(_keys.select().order_by(_keys.c.name, _keys.c.id)).fetchall()
        return [_row_to_key(r) for r in rows]

    def list_keys_by_ids(self, key_ids: Iterable[int]) -> list[Key]:
        ids = set(key_ids)
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_keys.select().where(_keys.c.id.in_(ids)).order_by(_keys.c.name)).fetchall()
        return [_row_to_key(r) for r in rows]

    def list_keys_in_category(self, category_id: int) -> list[Key]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _keys.select().where(_keys.c.category_id == category_id).order_by(_keys.c.name)
            ).fetchall()
        return [_row_to_key(r) for r in rows]

    def set_key_category(self, key_id: int, category_id: int | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_keys.update().where(_keys.c.id == key_id).values(category_id=category_id))
            conn.commit()
        return result.rowcount > 0

    def reassign_key_creator(self, old_creator_id: int, new_creator_id: int | None) -> None:
        with self.engine.connect() as conn:
            conn.execute(_keys.update().where(_keys.c.creator_id == old_creator_id).values(creator_id=new_creator_id))
            conn.commit()

    def delete_key(self, key_id: int) -> bool:
        """Delete a key and every copy referencing it in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(_copies.delete().where(_copies.c.key_id == key_id))
            result = conn.execute(_keys.delete().where(_keys.c.id == key_id))
        return result.rowcount > 0

    def delete_all_keys(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(_copies.delete())
            conn.execute(_keys.delete())

    # ------------------------------------------------------------------
    # Encrypted copies
    # ------------------------------------------------------------------

    def list_copies_for_key(self, key_id: int) -> list[EncryptedPassword]:
        with self.engine.connect() as conn:
            rows = conn.execute(_copies.select().where(_copies.c.key_id == key_id).order_by(_copies.c.id)).fetchall()
        return [_row_to_copy(r) for r in rows]

    def list_copies_for_owner(self, owner_id: int) -> list[EncryptedPassword]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _copies.select().where(_copies.c.owner_id == owner_id).order_by(_copies.c.id)
            ).fetchall()
        return [_row_to_copy(r) for r in rows]

    def get_copy(self, key_id: int, owner_id: int) -> EncryptedPassword | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _copies.select().where((_copies.c.key_id == key_id) & (_copies.c.owner_id == owner_id))
            ).fetchone()
        return _row_to_copy(row) if row is not None else None

    def delete_copies(self, copy_ids: Iterable[int]) -> int:
        ids = set(copy_ids)
        if not ids:
            return 0
        with self.engine.connect() as conn:
            result = conn.execute(_copies.delete().where(_copies.c.id.in_(ids)))
            conn.commit()
        return result.rowcount

    def delete_copies_for_owner(self, owner_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_copies.delete().where(_copies.c.owner_id == owner_id))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers and row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _insert_copies(conn: Connection, key_id: int, copies: Iterable[EncryptedPassword]) -> None:
    now = _now_iso()
    for copy in copies:
        conn.execute(
            _copies.insert().values(
                owner_id=copy.owner_id,
                key_id=key_id,
                encrypted_password=copy.encrypted_password,
                created_at=now,
            )
        )


def _write_levels(conn: Connection, levels: dict[int, int]) -> None:
    for category_id, level in levels.items():
        conn.execute(_categories.update().where(_categories.c.id == category_id).values(tree_level=level))


def _hydrate_categories(conn: Connection, rows) -> list[Category]:
    if not rows:
        return []
    ids = [r.id for r in rows]
    groups: dict[int, set[int]] = defaultdict(set)
    for r in conn.execute(_category_groups.select().where(_category_groups.c.category_id.in_(ids))):
        groups[r.category_id].add(r.group_id)
    return [_row_to_category(r, groups[r.id]) for r in rows]


def _row_to_category(row, group_ids: set[int]) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        parent_id=row.parent_id,
        level=row.tree_level,
        creator_id=row.creator_id,
        responsible_id=row.responsible_id,
        created_at=row.created_at,
        group_ids=set(group_ids),
    )


def _row_to_key(row) -> Key:
    return Key(
        id=row.id,
        name=row.name,
        login=row.login,
        notes=row.notes,
        creator_id=row.creator_id,
        category_id=row.category_id,
        created_at=row.created_at,
    )


def _row_to_copy(row) -> EncryptedPassword:
    return EncryptedPassword(
        id=row.id,
        owner_id=row.owner_id,
        key_id=row.key_id,
        encrypted_password=row.encrypted_password,
        created_at=row.created_at,
    )
