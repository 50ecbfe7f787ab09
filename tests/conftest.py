"""
tests/conftest.py -- Shared test fixtures for the billing backend.

This module provides:
  - FakeClock / clock: a controllable monotonic clock for MemoryCache expiry
  - settings: a fresh dev-mode Settings with generated secrets
  - user_store: an isolated SQLite file store per test (tmp_path)
  - cache: a MemoryCache driven by the fake clock
  - auth_service: AuthService wired to the three fixtures above
  - api_client: TestClient over the real app with a patched lifespan

Design: a per-test SQLite *file* rather than ':memory:'. AuthService runs
store calls via asyncio.to_thread and TestClient runs handlers in worker
threads; a file DB is visible to every connection in every thread.

The DEBUG env var must be set before any project import so get_settings()
auto-generates secrets in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.service import AuthService
from auth.store import UserStore
from cache.store import MemoryCache
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when advance() is called."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, _env_file=None)


@pytest.fixture
def user_store(tmp_path) -> Generator[UserStore, None, None]:
    store = UserStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield store
    store.close()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(clock=clock)


@pytest.fixture
def auth_service(user_store: UserStore, cache: MemoryCache, settings: Settings) -> AuthService:
    return AuthService(user_store, cache, settings)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    service: AuthService
    cache: MemoryCache
    clock: FakeClock


def _patch_lifespan(service: AuthService, cache: MemoryCache):
    """Return a lifespan that wires pre-built test collaborators into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = service.users
        app.state.cache = cache
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path, clock: FakeClock) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient with isolated store and cache.

    Function-scoped so the cookie jar and rate-limit counters start empty for
    every test. The service uses get_settings() -- the same instance the
    limiter reads -- so both sides agree on configuration.
    """
    user_store = UserStore(f"sqlite:///{tmp_path / 'api_auth.db'}")
    cache = MemoryCache(clock=clock)
    service = AuthService(user_store, cache, get_settings())

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(service, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, service=service, cache=cache, clock=clock)

    user_store.close()
