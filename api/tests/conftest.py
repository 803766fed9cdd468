"""Pytest configuration and shared fixtures.

This module provides:
- Settings cache isolation between tests
- Test settings with the production defaults
- An ASGI test client for the full application
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from core.config import Settings, clear_settings_cache


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear lru_cache between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Settings with the production defaults (godoc.org -> pkg.go.dev)."""
    return Settings()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """HTTP client driving the full ASGI app, middleware included.

    Lifespan is not run; tests patch outbound collaborators themselves.
    """
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://godoc.org") as ac:
        yield ac
