"""
tests/conftest.py -- Shared test fixtures for authsvc unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable clock for TTL tests
  - make_request: factory for bare Starlette Requests (checker and gate unit tests)
  - _patch_lifespan(): wires fresh in-memory state into app.state, bypassing real startup
  - client: TestClient with follow_redirects=False over the full ASGI app
  - login: helper fixture that performs the form login through the client

Seed data (every integration test starts from exactly this):
  users    alice   bcrypt password "wonderland", active
           jweldon plaintext password "password", active
           bob     bcrypt password "builder", inactive
  clients  example.com -> ["https://example.com/done"]

The env vars must be set before any api/auth/core import so get_settings()
auto-generates cookie keys in dev mode instead of raising ValueError.
INSECURE=true drops the Secure cookie flag so the test client (plain http)
sends the session cookie back.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

# CRITICAL: set before any app import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("INSECURE", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from api.main import init_state
from asgi import app
from auth.models import Client, User, UserState
from auth.tokens import hash_password
from core.config import get_settings

ALICE_PASSWORD = "wonderland"
EXAMPLE_REDIRECT = "https://example.com/done"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _make_request(
    path: str = "/protected",
    headers: Optional[dict[str, str]] = None,
    cookies: Optional[dict[str, str]] = None,
    query: str = "",
) -> Request:
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    if cookies:
        raw.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode("latin-1")))
    raw.append((b"host", b"testserver"))
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": query.encode("latin-1"),
        "headers": raw,
    }
    return Request(scope)


@pytest.fixture
def make_request():
    """Factory for bare Starlette Requests: make_request(path, headers=..., cookies=..., query=...)."""
    return _make_request


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


def seed(app_state) -> None:
    users = app_state.users
    users.put(User(id=1, username="alice", password=hash_password(ALICE_PASSWORD), email="alice@example.com", name="Alice"))
    users.put(User(id=2, username="jweldon", password="password", email="jw@example.com", name="J Weldon"))
    users.put(User(id=3, username="bob", password=hash_password("builder"), state=UserState.inactive))
    app_state.clients.put(Client(id="example.com", name="Example", endpoints=[EXAMPLE_REDIRECT]))


def _patch_lifespan():
    """Return an async context manager that replaces the real lifespan.

    Builds fresh in-memory state from the test settings, then seeds it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings())
        seed(app.state)
        yield

    return test_lifespan


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the full app with freshly seeded state.

    follow_redirects=False is essential: tests assert on 303/401 Location
    headers, which are invisible once the client follows the redirect.
    """
    app.router.lifespan_context = _patch_lifespan()
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def login(client: TestClient):
    """Return a helper that posts the login form: login(username, password, **extra_fields)."""

    def _login(username: str = "alice", password: str = ALICE_PASSWORD, **extra: str):
        data = {"submit": "Login", "username": username, "password": password, **extra}
        return client.post(get_settings().auth_root + "login/", data=data)

    return _login
