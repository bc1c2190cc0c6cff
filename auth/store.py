"""
auth/store.py -- SQLAlchemy Core persistence layer for the user/group directory.

Pattern: Repository + Data Mapper (same as vault/store.py).
UserStore is the repository; _row_to_user / _row_to_group / _row_to_token are
the mappers. Services and dependencies never touch SQL directly.

Tables:
  users                -- one row per user
  authorities          -- seeded with ROLE_ADMIN / ROLE_USER
  user_authorities     -- many-to-many users <-> authorities
  user_groups          -- one row per group
  user_group_members   -- many-to-many users <-> groups
  oauth_access_tokens  -- issued JWT ids, the revocation list in reverse

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/keyshare_auth.db (sibling to vault/keyshare_vault.db).

Layer rule: no imports from api/, vault/, services/, or realtime/.
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
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import AUTHORITIES, AccessToken, Group, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'keyshare_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("hashed_password", Text),
    Column("activated", Integer, nullable=False, server_default="0"),
    Column("activation_key", String(32)),
    Column("reset_key", String(32)),
    Column("reset_date", String(32)),
    Column("public_key", Text),
    Column("created_at", String(32), nullable=False),
)

_authorities = Table(
    "authorities",
    _metadata,
    Column("name", String(50), primary_key=True),
)

_user_authorities = Table(
    "user_authorities",
    _metadata,
    Column("user_id", Integer, nullable=False),
    Column("authority_name", String(50), nullable=False),
    UniqueConstraint("user_id", "authority_name", name="uq_user_authority"),
)

_groups = Table(
    "user_groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_group_members = Table(
    "user_group_members",
    _metadata,
    Column("group_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False),
    UniqueConstraint("group_id", "user_id", name="uq_group_member"),
)

_tokens = Table(
    "oauth_access_tokens",
    _metadata,
    Column("token_id", String(64), primary_key=True),  # JWT jti
    Column("login", String(100), nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Group and AccessToken entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(login="alice", email="alice@example.com",
                                     authorities={ROLE_USER}))
        store.add_member(group_id, uid)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_authorities()

    def _ensure_authorities(self) -> None:
        """Seed the authorities table. Idempotent -- safe on every startup."""
        with self.engine.begin() as conn:
            existing = {row.name for row in conn.execute(select(_authorities.c.name))}
            for name in AUTHORITIES:
                if name not in existing:
                    conn.execute(_authorities.insert().values(name=name))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user with its authorities and return the assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the login or email already
        exists. Services check uniqueness first; the constraint is the
        backstop for concurrent registrations.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    login=user.login,
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    hashed_password=user.hashed_password,
                    activated=1 if user.activated else 0,
                    activation_key=user.activation_key,
                    reset_key=user.reset_key,
                    reset_date=user.reset_date,
                    public_key=user.public_key,
                    created_at=_now_iso(),
                )
            )
            user_id = result.inserted_primary_key[0]
            for name in sorted(user.authorities):
                conn.execute(_user_authorities.insert().values(user_id=user_id, authority_name=name))
        return user_id

    def get_by_id(self, user_id: int) -> User | None:
        return self._get_one(_users.c.id == user_id)

    def get_by_login(self, login: str) -> User | None:
        """Look up a user by exact login. Returns None if not found."""
        return self._get_one(_users.c.login == login)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively."""
        return self._get_one(func.lower(_users.c.email) == email.lower())

    def get_by_activation_key(self, activation_key: str) -> User | None:
        return self._get_one(_users.c.activation_key == activation_key)

    def get_by_reset_key(self, reset_key: str) -> User | None:
        return self._get_one(_users.c.reset_key == reset_key)

    def list_users(self) -> list[User]:
        """Return all users ordered by login."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.login)).fetchall()
            return _hydrate_users(conn, rows)

    def list_users_by_ids(self, user_ids: Iterable[int]) -> list[User]:
        ids = set(user_ids)
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(ids)).order_by(_users.c.login)).fetchall()
            return _hydrate_users(conn, rows)

    def find_all_by_authority(self, authority: str) -> list[User]:
        """Return every user holding the given authority (e.g. all admins)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(
                    _users.c.id.in_(
                        select(_user_authorities.c.user_id).where(_user_authorities.c.authority_name == authority)
                    )
                )
                .order_by(_users.c.login)
            ).fetchall()
            return _hydrate_users(conn, rows)

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable columns on an existing user.

        Accepted fields: login, email, first_name, last_name, hashed_password,
        activated, activation_key, reset_key, reset_date, public_key.
        activated must be passed as bool; this method converts to int.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "activated" in fields:
            fields["activated"] = 1 if fields["activated"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def set_authorities(self, user_id: int, authorities: Iterable[str]) -> None:
        """Replace the full authority set of a user."""
        with self.engine.begin() as conn:
            conn.execute(_user_authorities.delete().where(_user_authorities.c.user_id == user_id))
            for name in sorted(set(authorities)):
                conn.execute(_user_authorities.insert().values(user_id=user_id, authority_name=name))

    def delete_user(self, user_id: int) -> bool:
        """Delete a user together with its authority and membership rows.

        Callers dissolve references held by other stores (categories, keys,
        encrypted passwords) before calling this method.
        """
        with self.engine.begin() as conn:
            conn.execute(_user_authorities.delete().where(_user_authorities.c.user_id == user_id))
            conn.execute(_group_members.delete().where(_group_members.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Authorities
    # ------------------------------------------------------------------

    def list_authorities(self) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_authorities.c.name).order_by(_authorities.c.name)).fetchall()
        return [r.name for r in rows]

    def get_authority(self, name: str) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_authorities.c.name).where(_authorities.c.name == name)).fetchone()
        return row.name if row is not None else None

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, group: Group) -> int:
        """Insert a new group. Raises IntegrityError on a duplicate name."""
        with self.engine.begin() as conn:
            result = conn.execute(_groups.insert().values(name=group.name, created_at=_now_iso()))
            group_id = result.inserted_primary_key[0]
            for user_id in sorted(group.member_ids):
                conn.execute(_group_members.insert().values(group_id=group_id, user_id=user_id))
        return group_id

    def get_group(self, group_id: int) -> Group | None:
        with self.engine.connect() as conn:
            row = conn.execute(_groups.select().where(_groups.c.id == group_id)).fetchone()
            if row is None:
                return None
            return _hydrate_groups(conn, [row])[0]

    def get_group_by_name(self, name: str) -> Group | None:
        with self.engine.connect() as conn:
            row = conn.execute(_groups.select().where(_groups.c.name == name)).fetchone()
            if row is None:
                return None
            return _hydrate_groups(conn, [row])[0]

    def list_groups(self) -> list[Group]:
        with self.engine.connect() as conn:
            rows = conn.execute(_groups.select().order_by(_groups.c.name)).fetchall()
            return _hydrate_groups(conn, rows)

    def rename_group(self, group_id: int, name: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_groups.update().where(_groups.c.id == group_id).values(name=name))
        return result.rowcount > 0

    def delete_group(self, group_id: int) -> bool:
        with self.engine.begin() as conn:
            conn.execute(_group_members.delete().where(_group_members.c.group_id == group_id))
            result = conn.execute(_groups.delete().where(_groups.c.id == group_id))
        return result.rowcount > 0

    def delete_all_groups(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(_group_members.delete())
            conn.execute(_groups.delete())

    def add_member(self, group_id: int, user_id: int) -> bool:
        """Add a user to a group. Returns False if already a member."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_group_members.c.user_id).where(
                    (_group_members.c.group_id == group_id) & (_group_members.c.user_id == user_id)
                )
            ).fetchone()
            if exists is not None:
                return False
            conn.execute(_group_members.insert().values(group_id=group_id, user_id=user_id))
        return True

    def remove_member(self, group_id: int, user_id: int) -> bool:
        """Remove a user from a group. Returns False if not a member."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _group_members.delete().where(
                    (_group_members.c.group_id == group_id) & (_group_members.c.user_id == user_id)
                )
            )
        return result.rowcount > 0

    def members_of(self, group_ids: Iterable[int]) -> list[User]:
        """Return the distinct members of any of the given groups."""
        ids = set(group_ids)
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.id.in_(select(_group_members.c.user_id).where(_group_members.c.group_id.in_(ids))))
                .order_by(_users.c.login)
            ).fetchall()
            return _hydrate_users(conn, rows)

    # ------------------------------------------------------------------
    # OAuth2 access tokens
    # ------------------------------------------------------------------

    def save_token(self, token: AccessToken) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _tokens.insert().values(
                    token_id=token.token_id,
                    login=token.login,
                    issued_at=token.issued_at,
                    expires_at=token.expires_at,
                )
            )

    def get_token(self, token_id: str) -> AccessToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token_id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def find_tokens_by_username(self, login: str) -> list[AccessToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tokens.select().where(_tokens.c.login == login).order_by(_tokens.c.issued_at)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def remove_token(self, token_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.token_id == token_id))
        return result.rowcount > 0

    def purge_expired_tokens(self) -> int:
        """Delete token rows whose expiry has passed. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at < _now_iso()))
        return result.rowcount

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
            if row is None:
                return None
            return _hydrate_users(conn, [row])[0]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _hydrate_users(conn: Connection, rows) -> list[User]:
    """Map user rows and attach authority names and group ids in two queries."""
    if not rows:
        return []
    ids = [r.id for r in rows]
    authorities: dict[int, set[str]] = defaultdict(set)
    for r in conn.execute(_user_authorities.select().where(_user_authorities.c.user_id.in_(ids))):
        authorities[r.user_id].add(r.authority_name)
    groups: dict[int, set[int]] = defaultdict(set)
    for r in conn.execute(_group_members.select().where(_group_members.c.user_id.in_(ids))):
        groups[r.user_id].add(r.group_id)
    return [_row_to_user(r, authorities[r.id], groups[r.id]) for r in rows]


def _hydrate_groups(conn: Connection, rows) -> list[Group]:
    if not rows:
        return []
    ids = [r.id for r in rows]
    members: dict[int, set[int]] = defaultdict(set)
    for r in conn.execute(_group_members.select().where(_group_members.c.group_id.in_(ids))):
        members[r.group_id].add(r.user_id)
    return [
        Group(id=r.id, name=r.name, created_at=r.created_at, member_ids=members[r.id])
        for r in rows
    ]


def _row_to_user(row, authorities: set[str], group_ids: set[int]) -> User:
    return User(
        id=row.id,
        login=row.login,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        hashed_password=row.hashed_password,
        activated=bool(row.activated),
        activation_key=row.activation_key,
        reset_key=row.reset_key,
        reset_date=row.reset_date,
        public_key=row.public_key,
        created_at=row.created_at,
        authorities=set(authorities),
        group_ids=set(group_ids),
    )


def _row_to_token(row) -> AccessToken:
    return AccessToken(
        token_id=row.token_id,
        login=row.login,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
    )
