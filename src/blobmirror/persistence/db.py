"""Async database engine and session factory for the cache.

Provides SQLite async connectivity using SQLAlchemy 2.0 asyncio extension
with the aiosqlite driver.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, event, func, inspect, select, text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from blobmirror.config import settings
from blobmirror.persistence.tables import CURRENT_SCHEMA_VERSION, Base, SchemaVersionTable

logger = logging.getLogger(__name__)

# Module-level engine (initialized lazily)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_init_lock = asyncio.Lock()


def _is_memory_url(url: str) -> bool:
    return url.endswith(":memory:") or url.rstrip("/").endswith("sqlite+aiosqlite:")


def create_cache_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the cache database.

    SQLite connections get foreign key enforcement and a 5 second busy
    timeout, so concurrent writers queue for the write lock. In-memory
    databases share a single connection so every session sees the same data.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if _is_memory_url(url):
        kwargs["poolclass"] = StaticPool
    engine = create_async_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _configure_connection(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Get or create the cache engine from settings."""
    global _engine
    if _engine is None:
        _engine = create_cache_engine(settings.cache_database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def session_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Provide a transactional scope around a series of operations.

    Usage:
        async with session_context() as session:
            session.add(row)
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


async def _stored_schema_version(conn: AsyncConnection) -> int:
    result = await conn.execute(select(func.max(SchemaVersionTable.schema_version_id)))
    return result.scalar() or 0


async def _store_schema_version(conn: AsyncConnection) -> None:
    await conn.execute(delete(SchemaVersionTable))
    await conn.execute(
        SchemaVersionTable.__table__.insert().values(schema_version_id=CURRENT_SCHEMA_VERSION)
    )


async def init_db(engine: AsyncEngine | None = None) -> bool:
    """Create the cache schema, rebuilding it when the stored version differs.

    The cache holds nothing that cannot be rebuilt by a synchronization
    pass, so an outdated schema is dropped rather than migrated.

    Returns:
        True if the schema was (re)created, False if it was already current.
    """
    engine = engine or get_engine()
    async with _init_lock:
        async with engine.begin() as conn:
            existing = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
            if not existing:
                logger.info("Creating cache schema version %d", CURRENT_SCHEMA_VERSION)
                await conn.run_sync(Base.metadata.create_all)
                await _store_schema_version(conn)
                return True

            await conn.run_sync(Base.metadata.create_all)
            stored = await _stored_schema_version(conn)
            logger.debug(
                "Stored schema version = %d, current schema version = %d",
                stored,
                CURRENT_SCHEMA_VERSION,
            )
            if stored == CURRENT_SCHEMA_VERSION:
                return False

            logger.warning(
                "Cache schema has changed; rebuilding with schema version %d",
                CURRENT_SCHEMA_VERSION,
            )
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
            await _store_schema_version(conn)
            return True


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def health_check(engine: AsyncEngine | None = None) -> bool:
    """Check database connectivity."""
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Cache database health check failed")
        return False
