"""
tests/conftest.py -- Shared test fixtures for SchoolGate unit and integration tests.

This module provides:
  - FakeClock: a hand-advanced monotonic clock for the in-memory state store
  - settings / cipher / codec / state_store / user_store / service: one fresh,
    isolated auth stack per test function
  - alice: a PRINCIPAL-role account with a known password and encrypted PII
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates missing keys in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import base64
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate ENCRYPTION_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# Lockout tests make many login attempts from the same client address.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.crypto import FieldCipher
from auth.models import Principal
from auth.roles import Role
from auth.service import AuthService
from auth.state import InMemoryStateStore
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password
from core.config import Settings

TEST_JWT_SECRET = base64.b64encode(bytes(range(64))).decode("ascii")
TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"

ALICE_PASSWORD = "correct-horse-1"


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": TEST_JWT_SECRET,
        "encryption_key": TEST_ENCRYPTION_KEY,
        "redis_url": "",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Function-scoped auth stack -- every test gets its own store and state
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return _make_settings()


@pytest.fixture
def cipher(settings: Settings) -> FieldCipher:
    return FieldCipher.from_settings(settings)


@pytest.fixture
def codec(settings: Settings) -> TokenCodec:
    return TokenCodec.from_settings(settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_store(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def user_store(cipher: FieldCipher) -> Generator[UserStore, None, None]:
    store = UserStore(cipher, db_url=_memory_db_url("test_users"))
    yield store
    store.close()


@pytest.fixture
def service(
    user_store: UserStore, state_store: InMemoryStateStore, codec: TokenCodec, settings: Settings
) -> AuthService:
    return AuthService(directory=user_store, state=state_store, codec=codec, settings=settings)


@pytest.fixture
def alice(user_store: UserStore) -> Principal:
    """A PRINCIPAL-role account whose password is ALICE_PASSWORD."""
    principal = Principal(
        login="alice",
        display_name="Alice Sharma",
        role=Role.PRINCIPAL,
        hashed_password=hash_password(ALICE_PASSWORD),
        email="alice@school.example",
        mobile="9876543210",
    )
    principal.id = user_store.create_user(principal)
    return principal


# ---------------------------------------------------------------------------
# API client -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test stack into app.state so routes and auth
    dependencies see isolated stores instead of the configured database and
    Redis.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = service.directory
        app.state.state_store = service.state
        app.state.codec = service.codec
        app.state.auth_service = service
        yield

    return test_lifespan


def create_principal(store: UserStore, login: str, password: str, role: Role) -> Principal:
    principal = Principal(
        login=login,
        display_name=login.title(),
        role=role,
        hashed_password=hash_password(password),
    )
    principal.id = store.create_user(principal)
    return principal


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    Two accounts exist before the client starts:
      testadmin / testpass123  (ADMIN, holds SYSTEM_SECURITY)
      teststaff / staffpass123 (OFFICE_STAFF)

    base_url uses localhost because TrustedHostMiddleware rejects the
    TestClient default host.
    """
    settings = _make_settings()
    cipher = FieldCipher.from_settings(settings)
    store = UserStore(cipher, db_url=_memory_db_url("test_api"))
    service = AuthService(
        directory=store,
        state=InMemoryStateStore(),
        codec=TokenCodec.from_settings(settings),
        settings=settings,
    )
    create_principal(store, "testadmin", "testpass123", Role.ADMIN)
    create_principal(store, "teststaff", "staffpass123", Role.OFFICE_STAFF)

    app.router.lifespan_context = _patch_lifespan(service, settings)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, service

    store.close()
