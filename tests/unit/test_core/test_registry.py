"""Unit tests for the event type registry."""
from __future__ import annotations

import logging

import pytest

from commerce_outbox.core.events.base import DomainEvent
from commerce_outbox.core.events.registry import (
    EventRegistry,
    handler_name,
    import_handler_modules,
)
from commerce_outbox.core.exceptions import (
    EventDeserializationError,
    RegistryConfigurationError,
    UnknownEventTypeError,
)
from tests.utils import OrderPlaced, RecordingHandler, StockMoved


async def noop(event: DomainEvent) -> None:
    return None


# ──────────────────────────────────────────────────────────────
# Payload types
# ──────────────────────────────────────────────────────────────


class TestEventRegistration:
    """Tests for registering payload classes."""

    def test_register_event(self):
        """Registry should track registered event types."""
        registry = EventRegistry()

        @registry.register
        class MyEvent(DomainEvent):
            event_type = "my.event"
            event_version = 1
            value: str

        assert registry.get("my.event") is MyEvent
        assert registry.get("my.event", version=1) is MyEvent
        assert "my.event" in registry
        assert len(registry) == 1

    def test_register_multiple_versions(self):
        """Registry should support multiple versions of an event."""
        registry = EventRegistry()

        @registry.register
        class MyEventV1(DomainEvent):
            event_type = "my.event"
            event_version = 1
            name: str

        @registry.register
        class MyEventV2(DomainEvent):
            event_type = "my.event"
            event_version = 2
            name: str
            description: str | None = None

        assert registry.get("my.event") is MyEventV2
        assert registry.get("my.event", version=1) is MyEventV1
        assert registry.list_versions("my.event") == [1, 2]
        assert registry.get_latest_version("my.event") == 2

    def test_registering_same_class_twice_is_noop(self, registry):
        registry.register(OrderPlaced)
        registry.register(OrderPlaced)

        assert registry.list_types() == ["order.placed"]

    def test_conflicting_class_for_same_tag_is_rejected(self, registry):
        registry.register(OrderPlaced)

        class ImpostorPlaced(DomainEvent):
            event_type = "order.placed"
            order_id: str

        with pytest.raises(RegistryConfigurationError, match="already registered"):
            registry.register(ImpostorPlaced)

    def test_get_unknown_event(self, registry):
        """Registry should return None for unknown event types."""
        assert registry.get("unknown.event") is None
        assert registry.get("unknown.event", version=1) is None

    def test_get_or_raise_unknown_event(self, registry):
        with pytest.raises(UnknownEventTypeError, match="unknown.event"):
            registry.get_or_raise("unknown.event")


# ──────────────────────────────────────────────────────────────
# Deserialization
# ──────────────────────────────────────────────────────────────


class TestDeserialize:
    """Tests for rebuilding events from stored payloads."""

    def test_deserialize_event(self, registry):
        """Registry should deserialize events from payload."""
        registry.register(OrderPlaced)
        original = OrderPlaced(order_id="o-1", total_cents=4999)

        event = registry.deserialize("order.placed", original.to_outbox_payload(), version=1)

        assert isinstance(event, OrderPlaced)
        assert event.order_id == "o-1"
        assert event.total_cents == 4999
        assert event.event_id == original.event_id

    def test_deserialize_unknown_type_raises(self, registry):
        """Unregistered type tags cannot be delivered."""
        with pytest.raises(UnknownEventTypeError) as exc_info:
            registry.deserialize("order.refunded", {"order_id": "o-1"})

        assert exc_info.value.reason == "unknown_type"

    def test_deserialize_invalid_payload_raises(self, registry):
        registry.register(OrderPlaced)

        with pytest.raises(EventDeserializationError, match="does not match OrderPlaced"):
            registry.deserialize("order.placed", {"order_id": "o-1"})

    def test_falls_back_to_latest_version(self, registry):
        """Unknown versions use the latest class unless strict."""
        registry.register(OrderPlaced)
        payload = OrderPlaced(order_id="o-1", total_cents=1).to_outbox_payload()

        event = registry.deserialize("order.placed", payload, version=7)

        assert isinstance(event, OrderPlaced)

    def test_strict_version_rejects_unknown_version(self, registry):
        registry.register(OrderPlaced)
        payload = OrderPlaced(order_id="o-1", total_cents=1).to_outbox_payload()

        with pytest.raises(UnknownEventTypeError, match="version 7"):
            registry.deserialize("order.placed", payload, version=7, strict_version=True)


# ──────────────────────────────────────────────────────────────
# Subscribers
# ──────────────────────────────────────────────────────────────


class TestSubscribers:
    """Tests for handler subscription."""

    def test_subscribe_with_class_registers_type(self, registry):
        registry.subscribe(OrderPlaced, noop)

        assert "order.placed" in registry
        assert registry.handlers_for("order.placed") == (noop,)

    def test_subscribe_as_decorator(self, registry):
        registry.register(StockMoved)

        @registry.subscribe("stock.moved")
        async def record_statistics(event: StockMoved) -> None:
            return None

        assert registry.handlers_for("stock.moved") == (record_statistics,)

    def test_handlers_keep_subscription_order(self, registry):
        first = RecordingHandler(name="first")
        second = RecordingHandler(name="second")

        registry.subscribe(OrderPlaced, first)
        registry.subscribe(OrderPlaced, second)

        assert registry.handlers_for("order.placed") == (first, second)

    def test_duplicate_subscription_is_ignored(self, registry):
        registry.subscribe(OrderPlaced, noop)
        registry.subscribe(OrderPlaced, noop)

        assert len(registry.handlers_for("order.placed")) == 1

    def test_subscribe_to_unregistered_tag_fails(self, registry):
        """Typos in type tags fail at startup, not at delivery."""
        with pytest.raises(RegistryConfigurationError, match="order.plcaed"):
            registry.subscribe("order.plcaed", noop)

    def test_register_mapping(self, registry):
        handler = RecordingHandler()

        registry.register_mapping({OrderPlaced: [noop, handler], StockMoved: [handler]})

        assert registry.handlers_for("order.placed") == (noop, handler)
        assert registry.handlers_for("stock.moved") == (handler,)

    def test_subscription_name_labels_handler(self, registry):
        handler = RecordingHandler()
        registry.subscribe(OrderPlaced, handler, name="warehouse-sync")

        @registry.subscribe(OrderPlaced, name="stats")
        async def record_statistics(event: OrderPlaced) -> None:
            return None

        assert registry.name_of(handler) == "warehouse-sync"
        assert registry.name_of(record_statistics) == "stats"
        assert registry.name_of(noop) == f"{__name__}.noop"

    def test_clear_forgets_subscription_names(self, registry):
        registry.subscribe(OrderPlaced, noop, name="custom")

        registry.clear()

        assert registry.name_of(noop) == f"{__name__}.noop"

    def test_handlers_for_unknown_type_is_empty(self, registry):
        assert registry.handlers_for("nothing.here") == ()

    def test_clear(self, registry):
        registry.subscribe(OrderPlaced, noop)

        registry.clear()

        assert len(registry) == 0
        assert registry.handlers_for("order.placed") == ()


# ──────────────────────────────────────────────────────────────
# Startup validation
# ──────────────────────────────────────────────────────────────


class TestValidate:
    """Tests for the startup configuration check."""

    def test_reports_types_without_handlers(self, registry, caplog):
        registry.subscribe(OrderPlaced, noop)
        registry.register(StockMoved)

        with caplog.at_level(logging.ERROR, logger="commerce_outbox.core.events.registry"):
            unhandled = registry.validate()

        assert unhandled == ["stock.moved"]
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_strict_raises(self, registry):
        registry.register(StockMoved)

        with pytest.raises(RegistryConfigurationError, match="stock.moved"):
            registry.validate(strict=True)

    def test_fully_wired_registry_passes(self, registry):
        registry.register_mapping({OrderPlaced: [noop], StockMoved: [noop]})

        assert registry.validate(strict=True) == []


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────


class TestHelpers:
    def test_handler_name_for_function(self):
        assert handler_name(noop) == f"{__name__}.noop"

    def test_handler_name_for_callable_instance(self):
        assert handler_name(RecordingHandler()) == "tests.utils.RecordingHandler"

    def test_import_handler_modules(self):
        assert import_handler_modules(["json", "logging"]) == ["json", "logging"]

    def test_import_handler_modules_reports_missing_module(self):
        with pytest.raises(RegistryConfigurationError, match="no_such_handlers"):
            import_handler_modules(["no_such_handlers"])
