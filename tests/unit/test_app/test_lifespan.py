"""Tests for FastAPI application lifespan management."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from commerce_outbox.app import lifespan as lifespan_module
from commerce_outbox.app.lifespan import lifespan
from commerce_outbox.core.exceptions import RegistryConfigurationError
from commerce_outbox.core.settings import clear_settings_cache
from commerce_outbox.infra.events.outbox.processor import get_outbox_processor
from tests.utils import OrderPlaced, RecordingHandler, StockMoved, fetch_record, stage_events

pytestmark = pytest.mark.usefixtures("reset_global_processor")


@pytest.fixture
def logging_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Keep the lifespan from reconfiguring the test process logging."""
    calls: list[dict[str, Any]] = []

    def fake_setup_logging(log_settings=None, **kwargs: Any) -> None:
        calls.append({"log_settings": log_settings, **kwargs})

    monkeypatch.setattr(lifespan_module, "setup_logging", fake_setup_logging)
    return calls


@pytest.fixture
def outbox_env(monkeypatch: pytest.MonkeyPatch):
    def apply(**values: str) -> None:
        for key, value in values.items():
            monkeypatch.setenv(f"OUTBOX_{key.upper()}", value)
        clear_settings_cache()

    return apply


async def test_startup_configures_logging(app, logging_calls):
    async with lifespan(app):
        pass

    assert len(logging_calls) == 1
    assert logging_calls[0]["force"] is True


async def test_disabled_outbox_starts_no_publisher(app, logging_calls):
    async with lifespan(app):
        assert get_outbox_processor() is None


async def test_publisher_delivers_with_app_registry(
    app, registry, configured_database, logging_calls, outbox_env
):
    outbox_env(enabled="true", poll_interval="0.05")
    handler = RecordingHandler()
    registry.subscribe(StockMoved, handler)
    (staged,) = await stage_events(configured_database, StockMoved(sku="sku-1", quantity=2))

    async with lifespan(app):
        processor = get_outbox_processor()
        assert processor is not None
        assert processor.is_running
        assert processor.registry is registry

        for _ in range(200):
            if handler.call_count:
                break
            await asyncio.sleep(0.01)

        record = await fetch_record(configured_database, staged.id)

    assert handler.call_count == 1
    assert record.processed_at is not None
    assert get_outbox_processor() is None


async def test_strict_registry_fails_startup(app, registry, logging_calls, outbox_env):
    outbox_env(strict_registry="true")
    registry.register(OrderPlaced)

    with pytest.raises(RegistryConfigurationError, match="order.placed"):
        async with lifespan(app):
            pass


async def test_unhandled_type_is_logged_when_not_strict(app, registry, logging_calls, caplog):
    registry.register(OrderPlaced)

    with caplog.at_level("ERROR", logger="commerce_outbox.core.events.registry"):
        async with lifespan(app):
            pass

    assert any(
        getattr(r, "event_type", None) == "order.placed" for r in caplog.records
    )
