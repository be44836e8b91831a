"""
tests/conftest.py -- Shared test fixtures for LeadExchange tests.

This module provides:
  - FakeClock: a millisecond clock the tests advance by hand
  - make_store(): isolated named shared-memory SQLite UserStore
  - seed_user(): inserts an account without going through the API
  - test_settings / api_client: a fresh create_app() instance per test, so
    rate-limit counters never leak between tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any application import so Settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator

# CRITICAL: Set DEBUG before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import Settings

PASSWORD = "Password123!"

# Derived once per session: every seeded account shares it, which keeps the
# suite from paying for a full PBKDF2 derivation per fixture.
_SEED_HASH = hash_password(PASSWORD)


class FakeClock:
    """Millisecond clock for rate-limit tests. Starts at an arbitrary non-zero instant."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_store() -> UserStore:
    """Create an isolated UserStore on a uniquely named shared-memory database."""
    return UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def seed_user(store: UserStore, email: str, role: str = "builder", plan_id: str = "free") -> str:
    """Insert an account whose password is PASSWORD and return its ID."""
    return store.create_user(User(email=email, role=role, plan_id=plan_id, password=_SEED_HASH))


def login(client: TestClient, email: str, password: str = PASSWORD, **kwargs):
    return client.post("/api/auth/login", json={"email": email, "password": password}, **kwargs)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(debug=True, secret_key="test-secret-key-0123456789abcdef0123456789")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def api_client(test_settings: Settings, store: UserStore, clock: FakeClock) -> Generator[TestClient, None, None]:
    """Yield a TestClient on a freshly built app with its own store and counters.

    The client keeps cookies between requests, so a successful register or
    login leaves it holding a session.
    """
    app = create_app(test_settings, user_store=store, clock=clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
