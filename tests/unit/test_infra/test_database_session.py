"""Tests for database session helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from commerce_outbox.infra.database import session as session_module
from tests.utils import make_order


@pytest.fixture
def temp_engine(monkeypatch):
    """Fresh in-memory engine installed as the process engine."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    monkeypatch.setattr(session_module, "_engine", None)
    monkeypatch.setattr(session_module, "_session_factory", None)
    session_module.configure_database(engine)
    return engine


async def test_ensure_tables_creates_event_outbox(temp_engine):
    """ensure_tables should create the outbox table when missing."""
    await session_module.ensure_tables()
    await session_module.ensure_tables()

    async with temp_engine.connect() as conn:
        result = await conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name='event_outbox'")
        )
        assert result.scalar_one() == "event_outbox"
    await session_module.close_database()


async def test_check_database_reports_healthy(temp_engine):
    assert await session_module.check_database() == {"healthy": True}
    await session_module.close_database()


async def test_check_database_reports_failure(monkeypatch, tmp_path):
    broken = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
    monkeypatch.setattr(session_module, "_engine", broken)

    status = await session_module.check_database()

    assert status["healthy"] is False
    assert "error" in status
    await broken.dispose()


async def test_get_async_session_rolls_back_on_error(temp_engine):
    await session_module.ensure_tables()

    with pytest.raises(RuntimeError):
        async with session_module.get_async_session() as session:
            session.add(make_order())
            await session.flush()
            raise RuntimeError("abort")

    async with temp_engine.connect() as conn:
        count = await conn.scalar(text("SELECT count(*) FROM test_orders"))
    assert count == 0
    await session_module.close_database()


def test_engine_is_created_lazily_once(monkeypatch):
    monkeypatch.setattr(session_module, "_engine", None)
    monkeypatch.setattr(session_module, "_session_factory", None)

    engine = session_module.get_engine()

    assert isinstance(engine, AsyncEngine)
    assert session_module.get_engine() is engine
    assert session_module.get_session_factory() is session_module.get_session_factory()


async def test_close_database_forgets_engine(temp_engine):
    await session_module.close_database()

    assert session_module._engine is None
    assert session_module._session_factory is None
