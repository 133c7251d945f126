"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- A controllable clock (no sleeping in tests)
- An in-memory key-value store
- Services wired to the store and clock
- A recording notification sink
- API test client with store/clock/hasher overrides
"""

import os
from datetime import timedelta

import pytest
from argon2 import PasswordHasher
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("WEBHOOK_URL", "")
os.environ.setdefault("SWEEP_TOKEN", "")

from app.config import Settings, get_settings
from app.db.store import MemoryKeyValueStore
from app.services.credential_vault import CredentialVault
from app.services.rate_limiter import RateLimiter
from app.services.resources import ResourceLifecycleCoordinator
from app.services.session_manager import SessionManager
from tests.helpers import FakeClock, RecordingNotificationSink

# ============================================================================
# Clock and store
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-01-01T12:00:00Z."""
    return FakeClock()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    """Fresh in-memory store."""
    return MemoryKeyValueStore()


@pytest.fixture
def password_hasher() -> PasswordHasher:
    """Argon2 hasher with minimal cost so tests stay fast."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def vault(
    store: MemoryKeyValueStore, password_hasher: PasswordHasher, clock: FakeClock
) -> CredentialVault:
    return CredentialVault(store, hasher=password_hasher, min_password_length=6, clock=clock)


@pytest.fixture
def sessions(store: MemoryKeyValueStore, clock: FakeClock) -> SessionManager:
    return SessionManager(store, clock=clock)


@pytest.fixture
def limiter(store: MemoryKeyValueStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(store, clock=clock)


@pytest.fixture
def coordinator(store: MemoryKeyValueStore, clock: FakeClock) -> ResourceLifecycleCoordinator:
    return ResourceLifecycleCoordinator(
        store,
        clock=clock,
        min_ttl=timedelta(seconds=60),
        max_ttl=timedelta(days=30),
    )


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings as seen by the routes; override this fixture to change them."""
    return get_settings()


@pytest.fixture
def app(
    store: MemoryKeyValueStore,
    clock: FakeClock,
    password_hasher: PasswordHasher,
    notifier: RecordingNotificationSink,
    test_settings: Settings,
) -> FastAPI:
    """FastAPI app wired to the per-test store, clock, hasher and notifier."""
    from app.api.dependencies import get_clock, get_notifier, get_password_hasher, get_store
    from app.main import app as main_app

    main_app.dependency_overrides[get_store] = lambda: store
    main_app.dependency_overrides[get_clock] = lambda: clock
    main_app.dependency_overrides[get_password_hasher] = lambda: password_hasher
    main_app.dependency_overrides[get_notifier] = lambda: notifier
    main_app.dependency_overrides[get_settings] = lambda: test_settings
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Synchronous test client (lifespan not started)."""
    return TestClient(app)
