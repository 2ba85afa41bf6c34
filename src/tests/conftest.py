"""Shared pytest fixtures for test suite."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

# Set test environment variables BEFORE any app imports
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["OTEL_ENABLED"] = "false"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from bookshare.core.config import Settings
from bookshare.core.database import Database
from bookshare.core.logging import configure_logging


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Get settings configured for testing.

    Returns:
        Settings: Test environment settings
    """
    return Settings(
        environment="testing",
        log_level="WARNING",
        otel_enabled=False,
    )


@pytest.fixture(scope="session", autouse=True)
def setup_logging(test_settings: Settings) -> None:
    """Configure structlog once for the whole run."""
    configure_logging(test_settings)


# ===== Database Fixtures =====


@pytest_asyncio.fixture(scope="function")
async def database(
    test_settings: Settings, tmp_path: Path
) -> AsyncGenerator[Database, None]:
    """Create a fresh database with the full schema for one test.

    Uses a file-backed SQLite database under tmp_path so separate sessions
    get separate connections, which lets tests observe what other readers
    see. Can be overridden with the DATABASE_URL environment variable
    (e.g., for PostgreSQL integration tests).

    Yields:
        Database: Engine and session factory for the test
    """
    database_url = os.getenv(
        "DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'bookshare.db'}"
    )
    db = Database(test_settings.model_copy(update={"database_url": database_url}))

    await db.drop_schema()
    await db.create_schema()

    yield db

    await db.drop_schema()
    await db.close()


@pytest_asyncio.fixture(scope="function")
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Session the repositories under test work with.

    Yields:
        AsyncSession: Database session for testing
    """
    async with database.session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def reader_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Independent session standing in for a concurrent reader.

    Yields:
        AsyncSession: Second database session on its own connection
    """
    async with database.session() as session:
        yield session


# ===== Utility Fixtures =====


@pytest.fixture
def anyio_backend() -> str:
    """Specify asyncio as the backend for anyio tests.

    Returns:
        str: Backend name
    """
    return "asyncio"
