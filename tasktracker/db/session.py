"""
Database Session Management
===========================

Provides async database session factory and dependency injection.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tasktracker.config import settings
from tasktracker.db.base import Base

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Postgres gets a sized connection pool (pool_size 20, max_overflow 40,
    5 minute recycle, LIFO reuse). SQLite keeps SQLAlchemy's defaults since
    it does not pool connections the same way.
    """
    global _engine

    if _engine is None:
        url = settings.database_url_async
        if not url:
            raise ValueError(
                "Database URL not configured. "
                "Please set DATABASE_URL environment variable."
            )

        kwargs: dict = {"echo": settings.DB_ECHO}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=20,
                max_overflow=40,
                pool_pre_ping=False,
                pool_recycle=300,
                pool_use_lifo=True,
                pool_timeout=30,
            )

        _engine = create_async_engine(url, **kwargs)
        if url.startswith("sqlite"):
            enable_sqlite_savepoints(_engine)

    return _engine


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on SQLite connections.

    The sqlite3 driver otherwise starts transactions lazily, which breaks
    SAVEPOINT (``session.begin_nested``).
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage:
        @app.get("/tasks")
        async def list_tasks(db: AsyncSession = Depends(get_db)):
            ...

    The session is automatically committed on success or rolled back on error.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create all tables from model metadata (development and tests only)."""
    # Import models so they are registered on Base.metadata
    import tasktracker.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Initialize database connection.

    Called on application startup. In development the schema is created
    directly from the models; other environments rely on Alembic.
    """
    engine = get_engine()

    if settings.is_development:
        await create_tables()

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    logger.info("Database connection established")


async def close_db() -> None:
    """
    Close database connections.

    Called on application shutdown to clean up resources.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed")
