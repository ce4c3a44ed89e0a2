"""
tests/conftest.py -- Shared test fixtures for SSO.

This module provides:
  - fake_store / service: AuthService wired to an in-memory FakeStore
  - sql_store: SqlStore on a throwaway SQLite file
  - _patch_lifespan(): wires test state into app.state, bypassing real startup
  - api_client: TestClient with a patched lifespan and a real SqlStore

Design: stores use a file-backed SQLite DB under tmp_path rather than
:memory:. AuthService calls the store from worker threads, and a plain
:memory: database is per-connection, so each thread would see a blank schema.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import SqlStore
from core.config import Settings
from tests.fakes import APP_7, APP_42, TOKEN_TTL, FakeStore

# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore(apps=[APP_42, APP_7])


@pytest.fixture
def service(fake_store: FakeStore) -> AuthService:
    return AuthService(fake_store, fake_store, fake_store, token_ttl=TOKEN_TTL)


@pytest.fixture
def sql_store(tmp_path) -> Generator[SqlStore, None, None]:
    store = SqlStore(f"sqlite:///{tmp_path / 'sso.db'}")
    yield store
    store.close()


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: SqlStore):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built store and service into app.state so TestClient routes
    never read the process environment.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.store = store
        app.state.auth_service = AuthService(store, store, store, token_ttl=settings.token_ttl)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, SqlStore], None, None]:
    """Yield (client, store) for API integration tests.

    App 42 is provisioned before the client starts. The store is shared across
    the module, so each test registers users under its own email.
    """
    db_path = tmp_path_factory.mktemp("api") / "sso.db"
    settings = Settings(_env_file=None, storage_path=str(db_path), token_ttl="1h", request_timeout="5s")
    store = SqlStore(settings.storage_path)
    store.save_app(APP_42)

    app.router.lifespan_context = _patch_lifespan(settings, store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()
