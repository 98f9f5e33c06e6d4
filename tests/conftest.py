"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine, session factory and session
    - Outbox Fixtures: isolated event registry and processor factory
    - Application Fixtures: FastAPI app and HTTP client bound to the test database

Every test gets a fresh in-memory database. The engine uses a static pool so
that all sessions (unit of work, publisher, assertions) see the same data.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable, Iterator
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OUTBOX_ENABLED", "false")
os.environ.setdefault("OUTBOX_HANDLER_MODULES", "")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("LOG_JSON_LOGS", "false")

from commerce_outbox.core.database.base import Base  # noqa: E402
from commerce_outbox.core.events.registry import EventRegistry  # noqa: E402
from commerce_outbox.core.settings import clear_settings_cache  # noqa: E402
from commerce_outbox.infra.database import session as db_session_module  # noqa: E402
from commerce_outbox.infra.database.session import create_session_factory  # noqa: E402
from commerce_outbox.infra.events.outbox import processor as processor_module  # noqa: E402
from commerce_outbox.infra.events.outbox.processor import OutboxProcessor  # noqa: E402
# Importing the test domain registers the test_orders table
from tests import utils  # noqa: E402, F401

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


@pytest.fixture(autouse=True)
def _isolate_settings() -> Iterator[None]:
    """Drop cached settings so monkeypatched environment variables apply."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Async engine on a fresh in-memory SQLite database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the production one."""
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Single session rolled back after the test."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
def configured_database(
    monkeypatch: pytest.MonkeyPatch,
    db_engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
) -> async_sessionmaker[AsyncSession]:
    """Install the test engine as the process-wide database.

    Code that calls ``get_session_factory()`` (API dependencies, the global
    processor, ``UnitOfWork()`` without arguments) then uses the test database.
    """
    monkeypatch.setattr(db_session_module, "_engine", db_engine)
    monkeypatch.setattr(db_session_module, "_session_factory", session_factory)
    return session_factory


# ============================================================================
# Outbox Fixtures
# ============================================================================


@pytest.fixture
def registry() -> EventRegistry:
    """Empty registry, isolated from the process-wide one."""
    return EventRegistry()


@pytest.fixture
def make_processor(
    registry: EventRegistry,
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., OutboxProcessor]:
    """Factory for processors bound to the test database and registry.

    Example:
        async def test_retry(make_processor):
            processor = make_processor(max_retries=2)
            result = await processor.process_batch()
    """

    def factory(**kwargs: Any) -> OutboxProcessor:
        options: dict[str, Any] = {
            "session_factory": session_factory,
            "batch_size": 20,
            "poll_interval": 0.05,
            "max_retries": 3,
            "handler_timeout": 5.0,
            "instance_id": "test-publisher",
        }
        options.update(kwargs)
        return OutboxProcessor(registry, **options)

    return factory


@pytest.fixture
async def reset_global_processor(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[None]:
    """Make sure no global processor leaks between tests."""
    monkeypatch.setattr(processor_module, "_processor", None)
    yield
    running = processor_module.get_outbox_processor()
    if running is not None:
        await running.stop()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(configured_database: async_sessionmaker[AsyncSession], registry: EventRegistry) -> FastAPI:
    """FastAPI application using the test database and registry.

    The lifespan does not run under ``ASGITransport``, so no background
    publisher is started.
    """
    from commerce_outbox.app.main import create_app

    return create_app(registry=registry)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the test application."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
