"""
tests/conftest.py -- Shared test fixtures for AdminConsole tests.

This module provides:
  - _make_test_store(): creates an isolated named shared-memory DB
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient plus an admin token and a regular-user token
  - store / hasher / audit / clock: unit-level building blocks for service tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any api/ or core/ import: get_settings() is
cached on first use and api.main reads it at import time to configure
middleware and rate limits.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any api/auth/core import.
#   DEBUG          -> get_settings() auto-generates SECRET_KEY, reset token echoed
#   BCRYPT_ROUNDS  -> bcrypt minimum cost so the suite stays fast
#   ALLOWED_HOSTS  -> TestClient sends Host: testserver
#   *_RATE_LIMIT   -> the suite logs in far more often than a real client would
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("RESET_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_app_state
from auth.audit import AuditTrail
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from core.config import get_settings

ADMIN_PASSWORD = "testpass123"
USER_PASSWORD = "userpass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the module name is a good choice).
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Builds the same object graph as production via init_app_state(), but on
    the pre-created test store instead of DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_app_state(app, user_store, get_settings())
        yield

    return test_lifespan


class FakeClock:
    """Callable clock for code that takes `clock=`. Starts at a fixed UTC instant."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, user_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers and guards but an isolated in-memory store.

    Seeded accounts:
      testadmin / testpass123  (admin, testadmin@example.com)
      testuser  / userpass123  (user,  testuser@example.com)
    """
    user_store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    hasher = PasswordHasher(rounds=4)

    user_store.create_user(
        User(
            username="testadmin",
            email="testadmin@example.com",
            name="Test Admin",
            hashed_password=hasher.hash(ADMIN_PASSWORD),
            role=ROLE_ADMIN,
        )
    )
    user_store.create_user(
        User(
            username="testuser",
            email="testuser@example.com",
            name="Test User",
            hashed_password=hasher.hash(USER_PASSWORD),
            role=ROLE_USER,
        )
    )

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        codec = client.app.state.token_codec
        admin = user_store.get_by_username("testadmin")
        user = user_store.get_by_username("testuser")
        admin_token = codec.issue(admin.id, admin.username, admin.role)
        user_token = codec.issue(user.id, user.username, user.role)
        yield client, admin_token, user_token

    user_store.close()


# ---------------------------------------------------------------------------
# Function-scoped unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """A fresh private in-memory store per test."""
    s = UserStore(db_url="sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def audit(store: UserStore) -> AuditTrail:
    return AuditTrail(store)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_user(store: UserStore, hasher: PasswordHasher):
    """Factory: insert a user and return the stored User (with id)."""

    def _make(
        username: str = "alice",
        password: str = "secret1",
        role: str = ROLE_USER,
        email: str | None = None,
        name: str | None = None,
    ) -> User:
        user_id = store.create_user(
            User(
                username=username,
                email=email or f"{username}@example.com",
                name=name or username.title(),
                hashed_password=hasher.hash(password),
                role=role,
            )
        )
        return store.get_by_id(user_id)

    return _make
