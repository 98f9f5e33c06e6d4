"""Unit of work that commits business changes and their domain events together.

The unit of work owns one ``AsyncSession``. On ``save_changes()`` it collects
the events captured by every aggregate in the session and stages them in the
outbox through ``EventPublisher``; ``commit()`` then commits business rows and
outbox rows in one database transaction. Aggregate buffers are cleared only
after that commit succeeds.

Usage:
    async with UnitOfWork() as uow:
        order = Order(customer_id=customer_id)
        uow.add(order)
        order.place()
    # committed on clean exit, rolled back if the block raised
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

from commerce_outbox.core.events.aggregate import AggregateRoot
from commerce_outbox.core.events.publisher import EventPublisher

if TYPE_CHECKING:
    from types import TracebackType

    from commerce_outbox.core.events.base import DomainEvent

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Transaction boundary for aggregates and the outbox.

    Attributes:
        correlation_id: Attached to every event staged by this unit of work
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        correlation_id: str | None = None,
        notify_processor: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self.correlation_id = correlation_id
        self._notify_processor = notify_processor

        self._tracked: list[AggregateRoot] = []
        self._staged: dict[int, tuple[AggregateRoot, set[str]]] = {}
        self._publisher: EventPublisher | None = None

    async def __aenter__(self) -> Self:
        self.begin()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            await self.close()

    def begin(self) -> AsyncSession:
        """Open the session if it is not open yet."""
        if self._session is None:
            factory = self._session_factory
            if factory is None:
                from commerce_outbox.infra.database.session import get_session_factory

                factory = get_session_factory()
            self._session = factory()
        return self._session

    @property
    def session(self) -> AsyncSession:
        return self.begin()

    def track(self, aggregate: AggregateRoot) -> None:
        """Make sure an aggregate's events are collected on save."""
        if not isinstance(aggregate, AggregateRoot):
            msg = f"Expected an AggregateRoot, got {type(aggregate).__name__}"
            raise TypeError(msg)
        if not any(tracked is aggregate for tracked in self._tracked):
            self._tracked.append(aggregate)

    def add(self, instance: Any) -> None:
        """Add an instance to the session, tracking it if it is an aggregate."""
        self.session.add(instance)
        if isinstance(instance, AggregateRoot):
            self.track(instance)

    def _collect_aggregates(self) -> list[AggregateRoot]:
        session = self.session
        aggregates = list(self._tracked)
        seen = {id(aggregate) for aggregate in aggregates}
        for instance in [*session.new, *session.identity_map.values()]:
            if isinstance(instance, AggregateRoot) and id(instance) not in seen:
                seen.add(id(instance))
                aggregates.append(instance)
        return aggregates

    async def save_changes(self) -> int:
        """Flush business changes and stage captured events in the outbox.

        Each event is staged once per unit of work, however often this is
        called. Does not commit.

        Returns:
            Number of events staged by this call

        Raises:
            EventSerializationError: If an event cannot be serialized. Nothing
                from this call is staged; the caller must roll back.
        """
        session = self.session
        # Assign primary keys so records can carry aggregate ids
        await session.flush()

        if self._publisher is None:
            self._publisher = EventPublisher(session, correlation_id=self.correlation_id)

        pending: list[tuple[int, DomainEvent, AggregateRoot]] = []
        for aggregate in self._collect_aggregates():
            _, staged_ids = self._staged.get(id(aggregate), (aggregate, set()))
            pending.extend(
                (capture, event, aggregate)
                for capture, event in aggregate.pending_captures()
                if event.event_id not in staged_ids
            )
        # Raise order across aggregates, not aggregate by aggregate
        pending.sort(key=lambda item: item[0])

        await self._publisher.publish_captured([(event, agg) for _, event, agg in pending])
        for _, event, aggregate in pending:
            _, staged_ids = self._staged.setdefault(id(aggregate), (aggregate, set()))
            staged_ids.add(event.event_id)

        staged_count = len(pending)
        if staged_count:
            await session.flush()
            logger.debug("Domain events staged", extra={"count": staged_count})
        return staged_count

    async def commit(self) -> None:
        """Save changes and commit business rows and events atomically.

        On failure the transaction is rolled back, aggregate buffers stay
        intact and the error propagates.
        """
        session = self.session
        try:
            await self.save_changes()
            await session.commit()
        except Exception:
            await self.rollback()
            raise

        committed = 0
        for aggregate, event_ids in self._staged.values():
            aggregate._discard_events(event_ids)
            committed += len(event_ids)
        self._staged.clear()
        self._publisher = None

        if committed:
            logger.debug("Domain events committed to outbox", extra={"count": committed})
            if self._notify_processor:
                self._wake_processor()

    async def rollback(self) -> None:
        """Discard the transaction; captured events remain on the aggregates."""
        if self._session is not None:
            await self._session.rollback()
        self._staged.clear()
        self._publisher = None

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._tracked.clear()

    @staticmethod
    def _wake_processor() -> None:
        from commerce_outbox.infra.events.outbox.processor import get_outbox_processor

        processor = get_outbox_processor()
        if processor is not None and processor.is_running:
            processor.notify()


__all__ = ["UnitOfWork"]
