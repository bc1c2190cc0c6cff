"""
tests/conftest.py -- Shared test fixtures for keyshare tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for auth + vault
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin bearer token for API integration tests
  - svc: a fresh service graph with a RecordingNotifier for service-level tests
  - make_user(): creates an activated user directly in a UserStore

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any core/auth import so
get_settings() auto-generates SECRET_KEY in dev mode, accepts the TestClient
host, and does not throttle the token endpoint during the run.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set env before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("TOKEN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import hash_password, issue_token
from core.hashid import IdCodec
from services.access import AccessResolver
from services.categories import CategoryService
from services.groups import GroupService
from services.keys import KeyService
from services.users import UserService
from vault.store import VaultStore

# ---------------------------------------------------------------------------
# Mount the WebSocket router once (asgi.py does this in production).
# ---------------------------------------------------------------------------

if not any(getattr(r, "path", None) == "/ws/updates" for r in app.router.routes):
    from realtime.routes import router as realtime_router

    app.include_router(realtime_router, tags=["Updates"])

# bcrypt is slow by design; hash the shared test password once.
TEST_PASSWORD = "testpass123"
_TEST_HASH = hash_password(TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, VaultStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', or a uuid per test).
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    vault_url = f"sqlite:///file:test_vault_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), VaultStore(db_url=vault_url)


def make_user(store: UserStore, login: str, admin: bool = False, activated: bool = True) -> User:
    """Insert a user with the shared test password and return it freshly loaded."""
    authorities = {ROLE_ADMIN, ROLE_USER} if admin else {ROLE_USER}
    uid = store.create_user(
        User(
            login=login,
            email=f"{login}@example.com",
            hashed_password=_TEST_HASH,
            activated=activated,
            authorities=authorities,
        )
    )
    return store.get_by_id(uid)


def _patch_lifespan(user_store: UserStore, vault_store: VaultStore):
    """Return an async context manager that replaces the real lifespan.

    Runs the same install_services() wiring as production against the test
    stores, so routes see isolated in-memory DBs.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, user_store, vault_store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The admin user "testadmin" (password TEST_PASSWORD) is created before the
    client starts; its token is recorded in the token store like any token
    issued by POST /oauth/token.
    """
    user_store, vault_store = _make_test_stores(f"api_{uuid.uuid4().hex[:8]}")

    admin = make_user(user_store, "testadmin", admin=True)
    token, _ = issue_token(user_store, admin)

    app.router.lifespan_context = _patch_lifespan(user_store, vault_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    user_store.close()
    vault_store.close()


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notifier that keeps every message instead of delivering it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    def send(self, login: str, topic: str, payload: dict) -> None:
        self.sent.append((login, topic, payload))

    def recipients(self, topic: str) -> set[str]:
        return {login for login, t, _ in self.sent if t == topic}


@dataclass
class ServiceGraph:
    users: UserStore
    vault: VaultStore
    codec: IdCodec
    resolver: AccessResolver
    keys: KeyService
    categories: CategoryService
    groups: GroupService
    accounts: UserService
    notifier: RecordingNotifier

    def reload(self, user: User) -> User:
        return self.users.get_by_id(user.id)


@pytest.fixture
def svc() -> Generator[ServiceGraph, None, None]:
    """A fresh, fully wired service graph over empty stores."""
    user_store, vault_store = _make_test_stores(uuid.uuid4().hex)
    codec = IdCodec("test-salt", 8)
    notifier = RecordingNotifier()
    resolver = AccessResolver(user_store, vault_store)
    keys = KeyService(vault_store, user_store, resolver, codec, notifier)
    graph = ServiceGraph(
        users=user_store,
        vault=vault_store,
        codec=codec,
        resolver=resolver,
        keys=keys,
        categories=CategoryService(vault_store, user_store, resolver, keys),
        groups=GroupService(user_store, vault_store, keys),
        accounts=UserService(user_store, vault_store, keys, root_login="root"),
        notifier=notifier,
    )
    yield graph
    user_store.close()
    vault_store.close()


@pytest.fixture
def new_user(svc: ServiceGraph):
    """Factory fixture: new_user("bob", admin=False) -> activated User in svc.users."""

    def factory(login: str, admin: bool = False, activated: bool = True) -> User:
        return make_user(svc.users, login, admin=admin, activated=activated)

    return factory


@pytest.fixture
def api_user(api_client: tuple[TestClient, str, int]):
    """Factory fixture: api_user("bob") -> (User, bearer headers) in the api_client stores."""
    client, _token, _uid = api_client

    def factory(login: str, admin: bool = False) -> tuple[User, dict[str, str]]:
        store = client.app.state.user_store
        user = make_user(store, login, admin=admin)
        token, _ = issue_token(store, user)
        return user, {"Authorization": f"Bearer {token}"}

    return factory
