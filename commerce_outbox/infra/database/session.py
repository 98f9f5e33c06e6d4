"""Database engine and session management (SQLAlchemy asyncio).

The engine and session factory are created lazily from ``DatabaseSettings``
on first use, so importing this module never opens a connection. Tests and
tools can swap them with ``configure_database``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from commerce_outbox.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from commerce_outbox.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by the unit of work and the publisher."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def create_engine_from_settings(settings: DatabaseSettings | None = None) -> AsyncEngine:
    """Create an async engine from database settings."""
    db_settings = settings or get_db_settings()
    engine = create_async_engine(db_settings.database_url, **db_settings.engine_kwargs())
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "pooled": not db_settings.is_sqlite},
    )
    return engine


def configure_database(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    """Install an engine (and optionally a session factory) for the process."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = session_factory or create_session_factory(engine)


def get_engine() -> AsyncEngine:
    """Return the process engine, creating it from settings on first use."""
    if _engine is None:
        configure_database(create_engine_from_settings())
    return cast("AsyncEngine", _engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process session factory."""
    if _session_factory is None:
        get_engine()
    return cast("async_sessionmaker[AsyncSession]", _session_factory)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Provide a session that rolls back if the block raises.

    Committing is left to the caller.

    Example:
        async with get_async_session() as session:
            session.add(order)
            await session.commit()
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def ensure_tables() -> None:
    """Create missing tables for all mapped models.

    A safety net for environments where Alembic migrations are not run
    (local development, ephemeral previews). Idempotent.
    """
    from commerce_outbox.core.database.base import Base
    from commerce_outbox.infra.events.outbox import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, checkfirst=True))
    logger.info("Database tables ensured")


async def check_database() -> dict[str, Any]:
    """Run a trivial query and report connectivity."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Database health check failed", extra={"error": str(exc)})
        return {"healthy": False, "error": str(exc)}
    return {"healthy": True}


async def close_database() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None


__all__ = [
    "check_database",
    "close_database",
    "configure_database",
    "create_engine_from_settings",
    "create_session_factory",
    "ensure_tables",
    "get_async_session",
    "get_engine",
    "get_session_factory",
]
