"""
Career Sewa API — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Real connections use a throwaway SQLite file through aiosqlite, so the
       connection lifecycle, pool events and schema setup run for real.
       Pure unit tests use AsyncMock sessions and managers instead.

Fixture Hierarchy (all function-scoped):
    test_settings
    ├── database              DatabaseConnection, not connected
    │   └── connected_database    connected, tables created
    │       ├── db_session            AsyncSession on the live engine
    │       └── app                   create_app(test_settings, connected_database)
    │           └── test_client       HTTPX AsyncClient over ASGITransport
    └── mock_db_session       AsyncMock session (no database at all)

ASGITransport does not run the lifespan, so fixtures connect explicitly.
"""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings for testing BEFORE any app imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./career_sewa_test.db"
os.environ["LOG_LEVEL"] = "WARNING"

from career_sewa.config import Settings  # noqa: E402
from career_sewa.database import DatabaseConnection  # noqa: E402
from career_sewa.main import create_app  # noqa: E402


async def no_sleep(delay: float) -> None:
    """Stand-in for asyncio.sleep so retry tests never wait."""


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'career_sewa.db'}"


@pytest.fixture
def test_settings(sqlite_url) -> Settings:
    """
    Settings pointing at a fresh SQLite file.

    Retries are kept short; tests that exercise backoff pass their own
    settings and a recording sleep.
    """
    return Settings(
        environment="test",
        database_url=sqlite_url,
        database_test_url=None,
        db_max_retries=2,
        db_retry_delay=0.01,
        health_check_timeout=2.0,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(test_settings) -> AsyncGenerator[DatabaseConnection, None]:
    conn = DatabaseConnection(test_settings, sleep=no_sleep, auto_reconnect=False)
    yield conn
    await conn.disconnect()


@pytest_asyncio.fixture
async def connected_database(database) -> DatabaseConnection:
    await database.connect()
    await database.setup_indexes()
    return database


@pytest_asyncio.fixture
async def db_session(connected_database):
    async with connected_database.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def app(test_settings, connected_database):
    return create_app(test_settings, connected_database)


@pytest_asyncio.fixture
async def test_client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient routed straight into the FastAPI app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession behavior.

    Usage:
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = user
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session
