"""Event publisher that stages domain events in the outbox.

The EventPublisher writes events to the outbox table through the caller's
session, in the same transaction as the business changes:

1. Events are added to the session next to the business rows
2. Both are committed (or rolled back) together
3. The background publisher delivers committed events later

This guarantees at-least-once delivery without a distributed transaction.
Most code goes through ``UnitOfWork``, which collects events from aggregates
and calls this publisher; direct use is for events that do not belong to an
aggregate.

Usage:
    async with session.begin():
        session.add(refund)
        publisher = EventPublisher(session)
        await publisher.publish(RefundIssued(refund_id=str(refund.id)))
    # Refund and event are committed together
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pydantic_core import PydanticSerializationError

from commerce_outbox.core.exceptions import EventSerializationError
from commerce_outbox.infra.metrics.prometheus import outbox_events_staged_total

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from commerce_outbox.core.events.aggregate import AggregateRoot
    from commerce_outbox.core.events.base import DomainEvent
    from commerce_outbox.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)

_MIN_TICK = timedelta(microseconds=1)


def serialize_event(event: DomainEvent) -> str:
    """Serialize an event payload to JSON.

    Raises:
        EventSerializationError: If the event cannot be represented as JSON.
    """
    try:
        return json.dumps(event.to_outbox_payload(), allow_nan=False)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise EventSerializationError(event.event_type, str(exc)) from exc


class EventPublisher:
    """Publisher for domain events using the outbox pattern.

    Events are staged in the outbox table rather than delivered directly.
    If the database transaction rolls back, the staged events roll back too.

    Within one publisher, staged records get strictly increasing
    ``occurred_at`` values and a ``sequence`` number, so their delivery order
    matches the order in which they were captured.

    Attributes:
        session: Database session for outbox writes
        correlation_id: Optional correlation ID to attach to all events
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        correlation_id: str | None = None,
    ) -> None:
        self._session = session
        self._correlation_id = correlation_id
        self._pending_count = 0
        self._last_occurred_at: datetime | None = None

    def _build_entry(
        self,
        event: DomainEvent,
        *,
        aggregate: AggregateRoot | None,
        correlation_id: str | None,
    ) -> EventOutbox:
        from commerce_outbox.infra.events.outbox.models import EventOutbox

        effective_correlation_id = correlation_id or self._correlation_id
        if effective_correlation_id and not event.correlation_id:
            event = event.with_correlation(effective_correlation_id)

        payload = serialize_event(event)

        occurred_at = event.occurred_at
        if self._last_occurred_at is not None and occurred_at <= self._last_occurred_at:
            occurred_at = self._last_occurred_at + _MIN_TICK
        self._last_occurred_at = occurred_at

        if aggregate is not None:
            aggregate_type = aggregate.get_aggregate_type()
            aggregate_id = aggregate.get_aggregate_id()
        else:
            aggregate_type = event.metadata.get("aggregate_type")
            aggregate_id = event.metadata.get("aggregate_id")

        return EventOutbox(
            event_type=event.event_type,
            event_version=event.event_version,
            payload=payload,
            occurred_at=occurred_at,
            sequence=self._pending_count,
            correlation_id=event.correlation_id,
            aggregate_type=aggregate_type,
            aggregate_id=str(aggregate_id) if aggregate_id is not None else None,
            retry_count=0,
        )

    async def publish(
        self,
        event: DomainEvent,
        *,
        aggregate: AggregateRoot | None = None,
        correlation_id: str | None = None,
    ) -> EventOutbox:
        """Stage an event for delivery via the outbox.

        The record is only persisted when the session is committed.

        Args:
            event: The domain event to stage
            aggregate: Aggregate that raised the event, stamped on the record
            correlation_id: Override correlation ID for this event

        Returns:
            The staged (not yet flushed) outbox record

        Raises:
            EventSerializationError: If the event payload is not serializable.
                Nothing is staged in that case; the caller must roll back.
        """
        entry = self._build_entry(event, aggregate=aggregate, correlation_id=correlation_id)
        self._session.add(entry)
        self._pending_count += 1
        outbox_events_staged_total.labels(event_type=event.event_type).inc()

        logger.debug(
            "Event staged in outbox",
            extra={
                "event_type": event.event_type,
                "event_id": event.event_id,
                "correlation_id": entry.correlation_id,
                "sequence": entry.sequence,
            },
        )
        return entry

    async def publish_many(
        self,
        events: list[DomainEvent],
        *,
        aggregate: AggregateRoot | None = None,
        correlation_id: str | None = None,
    ) -> list[EventOutbox]:
        """Stage multiple events, preserving their order.

        All events are serialized before any is added to the session, so a
        serialization failure stages nothing.
        """
        return await self.publish_captured(
            [(event, aggregate) for event in events], correlation_id=correlation_id
        )

    async def publish_captured(
        self,
        items: Sequence[tuple[DomainEvent, AggregateRoot | None]],
        *,
        correlation_id: str | None = None,
    ) -> list[EventOutbox]:
        """Stage events raised by several aggregates, in the given order.

        ``items`` pairs each event with the aggregate that raised it. Like
        ``publish_many``, a serialization failure stages nothing.
        """
        if not items:
            return []

        events = [event for event, _ in items]
        last_occurred_at = self._last_occurred_at
        pending_count = self._pending_count
        entries: list[EventOutbox] = []
        try:
            for event, aggregate in items:
                entries.append(
                    self._build_entry(event, aggregate=aggregate, correlation_id=correlation_id)
                )
                self._pending_count += 1
        except EventSerializationError:
            self._last_occurred_at = last_occurred_at
            self._pending_count = pending_count
            raise

        self._session.add_all(entries)
        for entry in entries:
            outbox_events_staged_total.labels(event_type=entry.event_type).inc()

        logger.debug(
            "Batch of events staged in outbox",
            extra={"count": len(entries), "event_types": [e.event_type for e in events]},
        )
        return entries

    @property
    def pending_count(self) -> int:
        """Number of events staged by this publisher."""
        return self._pending_count


__all__ = ["EventPublisher", "serialize_event"]
