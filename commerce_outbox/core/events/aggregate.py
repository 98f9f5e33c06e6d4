"""Event capture for aggregates.

An aggregate records the domain events its state-changing methods produce in a
private, ordered buffer. Nothing outside the aggregate gets mutable access to
that buffer: readers see an immutable tuple snapshot, and only the unit of work
clears it once the events are durably appended to the outbox.

Usage:
    class Order(Base, UUIDv7PKMixin, TimestampMixin, AggregateRoot):
        __tablename__ = "orders"

        status: Mapped[str] = mapped_column(String(20))

        def place(self) -> None:
            self.status = "placed"
            self.raise_event(OrderPlaced(order_id=str(self.id)))

    async with UnitOfWork() as uow:
        order = Order(status="draft")
        uow.add(order)
        order.place()
    # order row and OrderPlaced outbox record are committed together
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from commerce_outbox.core.events.base import DomainEvent

_BUFFER_ATTR = "_pending_domain_events"
_CAPTURES_ATTR = "_domain_event_captures"

# Process-wide raise order, shared by all aggregates
_capture_counter = itertools.count()


class AggregateRoot:
    """Mixin that captures domain events raised by an aggregate.

    Works on plain classes and on SQLAlchemy mapped classes alike. The buffer
    is kept in the instance ``__dict__`` and created lazily, because the ORM
    does not call ``__init__`` when it loads rows.
    """

    __allow_unmapped__ = True

    def _event_buffer(self) -> list[DomainEvent]:
        buffer = self.__dict__.get(_BUFFER_ATTR)
        if buffer is None:
            buffer = []
            self.__dict__[_BUFFER_ATTR] = buffer
        return buffer

    def _captures(self) -> dict[str, int]:
        captures = self.__dict__.get(_CAPTURES_ATTR)
        if captures is None:
            captures = {}
            self.__dict__[_CAPTURES_ATTR] = captures
        return captures

    def raise_event(self, event: DomainEvent) -> None:
        """Record that something happened to this aggregate.

        Events keep the order in which they were raised, across every
        aggregate in the process; that order becomes the delivery order of
        their outbox records.

        Raises:
            TypeError: If ``event`` is not a DomainEvent.
        """
        from commerce_outbox.core.events.base import DomainEvent

        if not isinstance(event, DomainEvent):
            msg = f"Expected a DomainEvent, got {type(event).__name__}"
            raise TypeError(msg)
        self._event_buffer().append(event)
        self._captures()[event.event_id] = next(_capture_counter)

    @property
    def domain_events(self) -> tuple[DomainEvent, ...]:
        """Events raised since the last confirmed append, oldest first."""
        return tuple(self._event_buffer())

    def pending_captures(self) -> list[tuple[int, DomainEvent]]:
        """Pending events paired with their process-wide raise position."""
        captures = self._captures()
        return [(captures.get(event.event_id, -1), event) for event in self._event_buffer()]

    @property
    def has_pending_events(self) -> bool:
        return bool(self.__dict__.get(_BUFFER_ATTR))

    def remove_event(self, event: DomainEvent) -> bool:
        """Withdraw an event raised during the current operation.

        Returns:
            True if the event was in the buffer.
        """
        buffer = self._event_buffer()
        for index, pending in enumerate(buffer):
            if pending is event:
                del buffer[index]
                self._captures().pop(event.event_id, None)
                return True
        return False

    def clear_events(self) -> None:
        """Drop captured events.

        Called by the unit of work after the events are committed to the
        outbox. Application code should not need to call it.
        """
        self._event_buffer().clear()
        self._captures().clear()

    def _discard_events(self, events: set[str]) -> None:
        """Drop only the events whose ``event_id`` is in ``events``."""
        buffer = self._event_buffer()
        buffer[:] = [event for event in buffer if event.event_id not in events]
        captures = self._captures()
        for event_id in events:
            captures.pop(event_id, None)

    @classmethod
    def get_aggregate_type(cls) -> str:
        """Aggregate type written to outbox records (class name by default)."""
        return cls.__name__

    def get_aggregate_id(self) -> str | None:
        """Aggregate id written to outbox records (``id`` attribute by default)."""
        identity = getattr(self, "id", None)
        return str(identity) if identity is not None else None


__all__ = ["AggregateRoot"]
