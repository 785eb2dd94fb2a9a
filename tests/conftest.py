"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - sql_store / xml_store: one isolated store per test
  - store: parametrized over both adapters, so behaviour that every adapter
    must share runs once per backend
  - manager: SecurityManager over `store`
  - api_client: TestClient wired to a throwaway SQLite file with a known
    admin API key, bypassing the real lifespan

Design: api_client uses a SQLite file under tmp_path rather than :memory:
because TestClient runs sync route handlers in a thread pool, and an
in-memory database is private to the connection that created it.
"""

from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.manager import SecurityManager
from auth.store import SqlStore
from auth.xml_store import XmlStore

ADMIN_KEY = "k" * 40
ADMIN_HEADERS = {"X-API-Key": ADMIN_KEY}


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sql_store() -> Iterator[SqlStore]:
    s = SqlStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def xml_store(tmp_path) -> Iterator[XmlStore]:
    s = XmlStore(tmp_path / "security.xml")
    yield s
    s.close()


@pytest.fixture(params=["sql", "xml"])
def store(request):
    """Each adapter in turn; tests using it must pass against both."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def manager(store) -> SecurityManager:
    return SecurityManager(store)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(manager: SecurityManager):
    """Return a lifespan that installs a pre-built manager instead of the configured one."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.security = manager
        app.state.admin_api_key = ADMIN_KEY
        app.state.backend = "sql"
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[tuple[TestClient, SecurityManager], None, None]:
    """Yield (client, manager) for API integration tests.

    The manager is the same object the routes use, so tests can seed data
    and inspect state directly. Rate-limit counters are reset so tests do
    not throttle each other.
    """
    manager = SecurityManager(SqlStore(f"sqlite:///{tmp_path / 'api.db'}"))
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(manager)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, manager

    manager.close()
