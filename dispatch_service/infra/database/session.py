"""Database engine and session management.

The engine is created from ``DatabaseSettings`` when the application starts
rather than at import time, so tests and the memory backend never open a
connection they do not use.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dispatch_service.core.database.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from dispatch_service.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)


def build_engine(db_settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured URL.

    Args:
        db_settings: Database settings.

    Returns:
        AsyncEngine (pool sizing applies to server databases only).
    """
    engine_kwargs: dict[str, Any] = {
        "echo": db_settings.echo,
        "pool_pre_ping": db_settings.pool_pre_ping,
    }
    if not db_settings.is_sqlite:
        engine_kwargs["pool_size"] = db_settings.pool_size
        engine_kwargs["max_overflow"] = db_settings.max_overflow
    return create_async_engine(db_settings.url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to ``engine``.

    Args:
        engine: Async engine.

    Returns:
        Session factory producing AsyncSession instances.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Provide a transactional scope around a series of operations.

    Commits on success and rolls back on any exception.

    Example:
        async with session_scope(factory) as session:
            await repo.create(session, record)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_database(engine: AsyncEngine, *, create_tables: bool) -> None:
    """Verify connectivity and optionally create missing tables.

    Args:
        engine: Async engine.
        create_tables: Run ``Base.metadata.create_all`` (checkfirst).

    Raises:
        Exception: Propagates the driver error when the database is unreachable.
    """
    # Import models so they are registered on Base.metadata
    from dispatch_service.features.notifications import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"url": engine.url.render_as_string(hide_password=True), "error": str(e)},
        )
        raise

    logger.info(
        "Database connection established successfully",
        extra={"url": engine.url.render_as_string(hide_password=True)},
    )


async def close_database(engine: AsyncEngine) -> None:
    """Dispose of the engine's connection pool.

    This should be called during application shutdown.
    """
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "build_engine",
    "build_session_factory",
    "close_database",
    "init_database",
    "session_scope",
]
