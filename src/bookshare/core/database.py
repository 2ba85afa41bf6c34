"""Database connection management with async SQLAlchemy."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bookshare.core.config import Settings
from bookshare.core.logging import get_logger
from bookshare.models.base import Base

logger = get_logger(__name__)


class DBErrorMessage:
    """Standardized database error messages."""
    CREATE_ENGINE_NO_URL = "Database URL is not configured"
    CREATE_ENGINE_MIN_DB_POOL_SIZE = "DATABASE_POOL_SIZE must be at least 1"
    CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW = "DATABASE_MAX_OVERFLOW must be non-negative"
    CREATE_ENGINE_FAILED = "Failed to create database engine"

    CLOSE_DATABASE_FAILED = "Failed to close database connections"


def _configure_sqlite_connection(dbapi_connection: Any, connection_record: Any) -> None:
    """Turn on foreign keys and hand transaction control to SQLAlchemy.

    The sqlite3 driver's own implicit BEGIN breaks SAVEPOINT handling, so it
    is disabled here and ``_begin_sqlite_transaction`` emits BEGIN instead.
    """
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_transaction(conn: Any) -> None:
    conn.exec_driver_sql("BEGIN")


def create_engine(settings: Settings) -> AsyncEngine:
    """Create AsyncEngine with connection pooling configuration.

    Args:
        settings: Application settings carrying the database URL and pool sizing

    Returns:
        AsyncEngine: Configured async SQLAlchemy engine

    Connection Pool Configuration (non-SQLite URLs):
        - pool_size: Number of connections to keep in the pool (default: 20)
        - max_overflow: Maximum overflow connections (default: 10)
        - pool_timeout: Timeout for acquiring a connection (default: 30s)

    Raises:
        ValueError: If database URL is invalid or settings are misconfigured
    """
    try:
        if not settings.database_url:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NO_URL)

        if settings.database_pool_size < 1:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_MIN_DB_POOL_SIZE)

        if settings.database_max_overflow < 0:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW)

        logger.info(
            "Creating async database engine",
            url=settings.database_url.split("@")[1] if "@" in settings.database_url else "***",
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

        if settings.is_sqlite:
            engine = create_async_engine(
                settings.database_url,
                echo=settings.database_echo,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
            event.listen(engine.sync_engine, "begin", _begin_sqlite_transaction)
        else:
            engine = create_async_engine(
                settings.database_url,
                echo=settings.database_echo,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_pre_ping=True,  # Test connections before using them
                pool_recycle=3600,  # Recycle connections after 1 hour
            )

        return engine
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to create database engine, due to configuration error: {e}")
        raise ValueError(DBErrorMessage.CREATE_ENGINE_FAILED) from e


class Database:
    """Engine and session factory built once from explicit settings.

    Example:
        database = Database(Settings())
        await database.create_schema()
        async with database.session() as session:
            books = BookRepository(session)
            book = await books.get_by_slug("dune")
        await database.close()
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.engine: AsyncEngine = create_engine(settings)
        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session, rolling back anything left uncommitted on exit."""
        async with self.session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        """Create every table known to the ORM metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        """Drop every table known to the ORM metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def check_connection(self) -> bool:
        """Check if database connection is available.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.debug("Database connection check passed")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed with error: {e}")
            return False

    async def close(self) -> None:
        """Close all database connections.

        Raises:
            RuntimeError: If graceful shutdown fails
        """
        try:
            logger.info("Closing database connections")
            await self.engine.dispose()
        except Exception as e:
            logger.error(f"Error closing database connections: {e}")
            raise RuntimeError(DBErrorMessage.CLOSE_DATABASE_FAILED) from e
