"""
tests/conftest.py -- Shared test fixtures for ChitterAuth.

This module provides:
  - store / hasher / identifiers: isolated building blocks for unit tests
  - FakeClock / FakeDatetimeClock: injectable clocks for window and expiry tests
  - RecordingDelivery: captures issued verification tokens instead of sending them
  - api_client: TestClient wired to a fresh in-memory store per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Hashers use the smallest argon2 / bcrypt costs the libraries accept so the
suite stays fast. Production costs are covered by the Settings defaults.

The DEBUG env var must be set before any core/auth import so get_settings()
accepts the development peppers instead of raising ConfigurationError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import TokenType
from auth.passwords import Argon2Strategy, BcryptStrategy, CredentialHasher
from auth.private import PrivateIdentifierHasher
from auth.ratelimit import RateLimiter
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.verification import VerificationTokenService
from core.config import Settings

TEST_PEPPER = "test-private-pepper-0123456789abcdef"


# ---------------------------------------------------------------------------
# Clocks and doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Epoch-seconds clock for RateLimiter / MemoryCounterStore."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """Aware-datetime clock for SessionManager / VerificationTokenService."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDelivery:
    """TokenDelivery that keeps every issued token for assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[TokenType, str, str, str]] = []

    def deliver(self, token_type: TokenType, user_id: str, destination: str, token: str) -> None:
        self.sent.append((token_type, user_id, destination, token))

    def latest(self, token_type: TokenType) -> str | None:
        for sent_type, _uid, _dest, token in reversed(self.sent):
            if sent_type is token_type:
                return token
        return None


# ---------------------------------------------------------------------------
# Component helpers
# ---------------------------------------------------------------------------


def make_fast_hasher(pepper: str = "") -> CredentialHasher:
    """argon2id preferred, bcrypt fallback, minimum costs."""
    return CredentialHasher(
        [
            Argon2Strategy(memory_cost=8, time_cost=1, parallelism=1, pepper=pepper),
            BcryptStrategy(rounds=4),
        ],
        production=False,
    )


def make_test_settings(**overrides) -> Settings:
    values = {"debug": True, "private_data_pepper": TEST_PEPPER}
    values.update(overrides)
    return Settings(**values)


def _shared_memory_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher() -> CredentialHasher:
    return make_fast_hasher()


@pytest.fixture
def make_hasher():
    """Factory fixture: make_hasher(pepper="...") -> CredentialHasher."""
    return make_fast_hasher


@pytest.fixture
def identifiers() -> PrivateIdentifierHasher:
    return PrivateIdentifierHasher(TEST_PEPPER, production=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dt_clock() -> FakeDatetimeClock:
    return FakeDatetimeClock()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, settings: Settings, delivery: RecordingDelivery):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, fast hashers and a recording delivery into
    app.state so routes run for real against isolated state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.store = store
        app.state.hasher = make_fast_hasher()
        app.state.identifiers = PrivateIdentifierHasher(settings.private_data_pepper, production=False)
        app.state.rate_limiter = RateLimiter()
        app.state.sessions = SessionManager(store, reuse_revokes_all=settings.reuse_revokes_all_sessions)
        app.state.verification = VerificationTokenService(store)
        app.state.delivery = delivery
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient with fresh store, limiter and delivery for each test.

    The app state is reachable from tests as client.app.state, e.g.
    client.app.state.delivery.latest(TokenType.verify_email).
    """
    store = AuthStore(_shared_memory_url())
    app.router.lifespan_context = _patch_lifespan(store, make_test_settings(), RecordingDelivery())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()
