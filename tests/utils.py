"""Test domain and helpers shared across the suite.

Provides a small commerce domain (an ``Order`` aggregate and a few events)
plus helpers to read outbox rows back and to build handlers that fail on
demand.

Usage:
    from tests.utils import OrderPlaced, RecordingHandler, make_order

    handler = RecordingHandler(fail_times=1)
    registry.subscribe(OrderPlaced, handler)

    order = make_order()
    order.place(total_cents=4999)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import Integer, String, select
from sqlalchemy.orm import Mapped, mapped_column

from commerce_outbox.core.database.base import Base, TimestampMixin, UUIDv7PKMixin
from commerce_outbox.core.database.utils import generate_uuid7
from commerce_outbox.core.events import AggregateRoot, DomainEvent, EventPublisher
from commerce_outbox.infra.events.outbox.models import EventOutbox

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


# ============================================================================
# Test domain
# ============================================================================


class OrderPlaced(DomainEvent):
    event_type: ClassVar[str] = "order.placed"

    order_id: str
    total_cents: int


class OrderShipped(DomainEvent):
    event_type: ClassVar[str] = "order.shipped"

    order_id: str
    carrier: str


class StockMoved(DomainEvent):
    event_type: ClassVar[str] = "stock.moved"

    sku: str
    quantity: int


class Order(Base, UUIDv7PKMixin, TimestampMixin, AggregateRoot):
    """Minimal aggregate used to exercise the unit of work."""

    __tablename__ = "test_orders"

    customer_id: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="draft")
    total_cents: Mapped[int] = mapped_column(Integer, default=0)

    def place(self, total_cents: int) -> OrderPlaced:
        self.status = "placed"
        self.total_cents = total_cents
        event = OrderPlaced(order_id=str(self.id), total_cents=total_cents)
        self.raise_event(event)
        return event

    def ship(self, carrier: str) -> OrderShipped:
        self.status = "shipped"
        event = OrderShipped(order_id=str(self.id), carrier=carrier)
        self.raise_event(event)
        return event


def make_order(customer_id: str = "cust-1") -> Order:
    """Build an order with its id assigned up front."""
    return Order(id=generate_uuid7(), customer_id=customer_id, status="draft", total_cents=0)


# ============================================================================
# Handlers
# ============================================================================


class RecordingHandler:
    """Async subscriber that records what it receives.

    Args:
        fail_times: Raise on the first N calls, then succeed
        always_fail: Raise on every call
        report_failure: Return False instead of raising
        delay: Seconds to sleep before answering
        log: Shared list receiving ``(name, event_id)`` for ordering checks
        name: Label used in ``log``
    """

    def __init__(
        self,
        *,
        fail_times: int = 0,
        always_fail: bool = False,
        report_failure: bool = False,
        delay: float = 0.0,
        log: list[tuple[str, str]] | None = None,
        name: str = "handler",
    ) -> None:
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.report_failure = report_failure
        self.delay = delay
        self.log = log
        self.name = name
        self.calls: list[Any] = []

    async def __call__(self, event: Any) -> bool | None:
        self.calls.append(event)
        if self.log is not None:
            self.log.append((self.name, event.event_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or len(self.calls) <= self.fail_times:
            msg = "subscriber unavailable"
            raise RuntimeError(msg)
        if self.report_failure:
            return False
        return None

    @property
    def call_count(self) -> int:
        return len(self.calls)


# ============================================================================
# Outbox helpers
# ============================================================================


async def stage_events(
    session_factory: async_sessionmaker[AsyncSession],
    *events: DomainEvent,
    correlation_id: str | None = None,
) -> list[EventOutbox]:
    """Commit events to the outbox in one transaction, outside any aggregate."""
    async with session_factory() as session:
        publisher = EventPublisher(session, correlation_id=correlation_id)
        records = await publisher.publish_many(list(events))
        await session.commit()
    return records


async def fetch_outbox(session_factory: async_sessionmaker[AsyncSession]) -> list[EventOutbox]:
    """All outbox rows in delivery order."""
    async with session_factory() as session:
        result = await session.execute(
            select(EventOutbox).order_by(EventOutbox.occurred_at, EventOutbox.sequence)
        )
        return list(result.scalars().all())


async def fetch_record(
    session_factory: async_sessionmaker[AsyncSession],
    event_id: UUID,
) -> EventOutbox:
    """Reload one outbox row from the database."""
    async with session_factory() as session:
        record = await session.get(EventOutbox, event_id)
        assert record is not None, f"outbox record {event_id} missing"
        return record
