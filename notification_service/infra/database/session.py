"""Async database engine and session management.

Engines and session factories are built explicitly and owned by the
service container, so tests can run against an isolated in-memory database.

Usage:
    engine = create_engine(get_db_settings())
    session_factory = create_session_factory(engine)

    async with session_scope(session_factory) as session:
        session.add(record)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.database import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from notification_service.core.settings.database import DatabaseSettings

logger = logging.getLogger(__name__)


def create_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    engine = create_async_engine(settings.database_url, **settings.engine_kwargs())
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "database": engine.url.database},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables for the registered models."""
    # Register model metadata before create_all
    from notification_service.features.notifications import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", extra={"tables": sorted(Base.metadata.tables)})


async def check_connection(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database connectivity check failed")
        return False
    return True


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Provide a transactional scope around a series of operations.

    Commits on success and rolls back on any exception, which is re-raised.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


__all__ = [
    "check_connection",
    "create_engine",
    "create_session_factory",
    "init_models",
    "session_scope",
]
