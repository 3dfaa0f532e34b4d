# This project was developed with assistance from AI tools.
"""Fixtures for functional tests.

The real app from ``loanflow.main`` is a module singleton. ``_clean_overrides``
ensures dependency_overrides are cleared after every test so persona
configuration from one test never leaks into the next.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from loanflow.core.config import settings
from loanflow.main import app as real_app
from loanflow.schemas.auth import UserContext

from .mock_db import configure_app_for_persona, configure_app_for_sqlite


@pytest.fixture(autouse=True)
def _clean_overrides():
    """Clear app dependency overrides after each test."""
    yield
    real_app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _auth_enforced(monkeypatch):
    """Anonymous personas go through the real bearer-token check."""
    monkeypatch.setattr(settings, "AUTH_DISABLED", False)


@pytest.fixture
def app():
    """Return the real FastAPI app with all routers mounted."""
    return real_app


@pytest.fixture
def make_client(app):
    """Factory fixture: configure persona + mock DB, return TestClient."""

    def _make(user: UserContext, session: AsyncMock) -> TestClient:
        configure_app_for_persona(app, user, session)
        return TestClient(app, raise_server_exceptions=False)

    return _make


@pytest.fixture
async def client_factory(app, session_factory):
    """Factory returning an async httpx client backed by in-memory SQLite.

    Calling the factory again switches persona; the database is shared for
    the whole test.
    """
    clients: list[httpx.AsyncClient] = []

    def _make(user: UserContext | None) -> httpx.AsyncClient:
        configure_app_for_sqlite(app, user, session_factory)
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        client = httpx.AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
