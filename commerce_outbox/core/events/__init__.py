"""Domain events, aggregate event capture and the dispatch registry.

Usage:
    from commerce_outbox.core.events import AggregateRoot, DomainEvent, event_registry

    @event_registry.register
    class OrderPlaced(DomainEvent):
        event_type: ClassVar[str] = "order.placed"
        order_id: str

    class Order(Base, UUIDv7PKMixin, AggregateRoot):
        def place(self) -> None:
            self.status = "placed"
            self.raise_event(OrderPlaced(order_id=str(self.id)))
"""

from commerce_outbox.core.events.aggregate import AggregateRoot
from commerce_outbox.core.events.base import DomainEvent
from commerce_outbox.core.events.publisher import EventPublisher, serialize_event
from commerce_outbox.core.events.registry import (
    EventHandler,
    EventRegistry,
    event_registry,
    handler_name,
    import_handler_modules,
)

__all__ = [
    "AggregateRoot",
    "DomainEvent",
    "EventHandler",
    "EventPublisher",
    "EventRegistry",
    "event_registry",
    "handler_name",
    "import_handler_modules",
    "serialize_event",
]
