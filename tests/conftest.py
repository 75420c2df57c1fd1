"""
tests/conftest.py -- Shared test fixtures for Storekeeper auth tests.

This module provides:
  - settings / store / service: unit-level fixtures on a private in-memory DB
  - _make_test_store(): creates an isolated shared-memory DB for API tests
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient against the real FastAPI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The key env vars must be set before any api/ import: api.limiter resolves
LOGIN_RATE_LIMIT through get_settings(), which refuses to build Settings
without both keys.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set keys before any api/core import so get_settings() succeeds.
TEST_SIGNING_KEY = "test-signing-key-0123456789-abcdefghijklmnop"
# base64 of b"0123456789abcdef0123456789abcdef" (32 bytes)
TEST_CIPHER_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

os.environ.setdefault("JWT_SIGNING_KEY", TEST_SIGNING_KEY)
os.environ.setdefault("CIPHER_KEY", TEST_CIPHER_KEY)
os.environ.setdefault("HASH_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService, build_auth_service
from auth.store import CredentialStore
from core.config import Settings

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings with fixed test keys and a fast KDF."""
    return Settings(
        jwt_signing_key=TEST_SIGNING_KEY,
        cipher_key=TEST_CIPHER_KEY,
        hash_rounds=4,
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    """Fresh in-memory CredentialStore, one per test."""
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(settings: Settings, store: CredentialStore) -> AuthService:
    return build_auth_service(settings, store=store)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> CredentialStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return CredentialStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(settings: Settings, store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and a service built from test settings
    into app.state so TestClient routes never touch the production database.
    No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.credential_store = store
        app.state.auth_service = build_auth_service(settings, store=store)
        app.state.purge_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real FastAPI app with a patched lifespan.

    Module-scoped for speed: tests in one module share a database, so each
    test uses its own email addresses.
    """
    test_settings = Settings(
        jwt_signing_key=TEST_SIGNING_KEY,
        cipher_key=TEST_CIPHER_KEY,
        hash_rounds=4,
        public_base_url="https://stock.example.test",
    )
    store = _make_test_store("api")
    app.router.lifespan_context = _patch_lifespan(test_settings, store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()
