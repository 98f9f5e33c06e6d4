"""Repository for EventOutbox operations.

Provides methods for:
- Claiming deliverable events for a publisher instance
- Recording delivery outcomes (processed, failed, quarantined)
- Backlog statistics and quarantine inspection
- Lease renewal and ownership checks between publisher instances
- Operator requeue of quarantined events

Records are never deleted here; retention is an operational concern.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update

from commerce_outbox.core.exceptions import LeaseLostError
from commerce_outbox.infra.events.outbox.models import EventOutbox

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


def _truncate(message: str, max_length: int) -> str:
    if max_length <= 0 or len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


class OutboxRepository:
    """Queries and state transitions for outbox records.

    Every method works on the caller's session and never commits; the
    publisher decides where transaction boundaries go.
    """

    @staticmethod
    def _quarantined_clause(max_retries: int) -> Any:
        return (EventOutbox.processed_at.is_(None)) & (
            (EventOutbox.dead_lettered_at.is_not(None)) | (EventOutbox.retry_count >= max_retries)
        )

    @staticmethod
    def _pending_clause(max_retries: int) -> Any:
        return (
            (EventOutbox.processed_at.is_(None))
            & (EventOutbox.dead_lettered_at.is_(None))
            & (EventOutbox.retry_count < max_retries)
        )

    async def get(self, session: AsyncSession, event_id: UUID) -> EventOutbox | None:
        """Load a single record by ID."""
        return await session.get(EventOutbox, event_id)

    async def claim_pending(
        self,
        session: AsyncSession,
        *,
        batch_size: int = 20,
        max_retries: int = 3,
        owner: str,
        lease_seconds: float = 60.0,
    ) -> Sequence[EventOutbox]:
        """Claim deliverable events for one publisher instance.

        Returns events that:
        - Have not been processed (processed_at is NULL)
        - Are below the retry limit and not quarantined
        - Are not scheduled for a later retry (next_retry_at <= now or NULL)
        - Are not leased by another publisher (locked_until < now or NULL)

        Events come back in capture order: ``occurred_at``, then ``sequence``,
        then ``id``. Selected rows are locked with FOR UPDATE SKIP LOCKED
        (ignored on SQLite) and stamped with a lease that outlives the row
        lock. The caller must commit to publish the lease.

        Args:
            session: Database session
            batch_size: Maximum number of events to claim
            max_retries: Exclude events with this many failed attempts
            owner: Publisher instance identifier recorded in ``locked_by``
            lease_seconds: How long the claim is honoured by other instances

        Returns:
            Claimed EventOutbox records, oldest first
        """
        now = datetime.now(UTC)

        stmt = (
            select(EventOutbox)
            .where(self._pending_clause(max_retries))
            .where(or_(EventOutbox.next_retry_at.is_(None), EventOutbox.next_retry_at <= now))
            .where(or_(EventOutbox.locked_until.is_(None), EventOutbox.locked_until < now))
            .order_by(
                EventOutbox.occurred_at.asc(),
                EventOutbox.sequence.asc(),
                EventOutbox.id.asc(),
            )
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        records = result.scalars().all()

        lease_expiry = now + timedelta(seconds=lease_seconds)
        for record in records:
            record.locked_by = owner
            record.locked_until = lease_expiry
        if records:
            await session.flush()
        return records

    async def renew_lease(
        self,
        session: AsyncSession,
        record: EventOutbox,
        *,
        owner: str,
        lease_seconds: float = 60.0,
    ) -> bool:
        """Extend the lease on a claimed record right before delivering it.

        Succeeds only while ``owner`` still holds the record and it is
        undelivered. A False result means another instance took the record
        over after the batch lease expired; the caller must skip it.
        """
        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == record.id,
                EventOutbox.locked_by == owner,
                EventOutbox.processed_at.is_(None),
                EventOutbox.dead_lettered_at.is_(None),
            )
            .values(locked_until=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return bool(result.rowcount)

    async def _apply_outcome(
        self,
        session: AsyncSession,
        record: EventOutbox,
        values: dict[str, Any],
        owner: str | None,
    ) -> None:
        if owner is None:
            for key, value in values.items():
                setattr(record, key, value)
            await session.flush()
            return

        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == record.id,
                EventOutbox.locked_by == owner,
                EventOutbox.processed_at.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if not result.rowcount:
            raise LeaseLostError(record.id, owner)
        await session.refresh(record)

    async def mark_processed(
        self,
        session: AsyncSession,
        record: EventOutbox,
        *,
        owner: str | None = None,
    ) -> bool:
        """Mark an event as delivered to all subscribers.

        Terminal: a processed record is never selected again. A record that
        is already processed is left untouched.

        Args:
            session: Database session
            record: The delivered record
            owner: Only write while this publisher holds the lease

        Returns:
            True if this call moved the record to processed

        Raises:
            LeaseLostError: ``owner`` no longer holds the record.
        """
        if record.processed_at is not None:
            return False
        values = {
            "processed_at": datetime.now(UTC),
            "last_error": None,
            "next_retry_at": None,
            "locked_by": None,
            "locked_until": None,
        }
        await self._apply_outcome(session, record, values, owner)
        return True

    async def mark_failed(
        self,
        session: AsyncSession,
        record: EventOutbox,
        error_message: str,
        *,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.0,
        error_max_length: int = 1000,
        owner: str | None = None,
    ) -> bool:
        """Record a failed delivery attempt.

        Increments ``retry_count`` by exactly one and stores the error. When
        backoff is enabled the next attempt is delayed exponentially:
        base, 2 * base, 4 * base, ...

        Reaching ``max_retries`` quarantines the record.

        Args:
            session: Database session
            record: The record whose delivery failed
            error_message: Description of the failure
            max_retries: Attempts allowed before quarantine
            retry_backoff_seconds: Base delay; 0 retries on the next poll
            error_max_length: Truncate stored errors beyond this length
            owner: Only write while this publisher holds the lease

        Returns:
            True if the record was quarantined by this failure

        Raises:
            LeaseLostError: ``owner`` no longer holds the record.
        """
        retry_count = record.retry_count + 1
        now = datetime.now(UTC)

        values: dict[str, Any] = {
            "retry_count": retry_count,
            "last_error": _truncate(error_message, error_max_length),
            "locked_by": None,
            "locked_until": None,
            "next_retry_at": None,
        }
        if retry_backoff_seconds > 0:
            backoff_multiplier = 2 ** (retry_count - 1)
            values["next_retry_at"] = now + timedelta(seconds=retry_backoff_seconds * backoff_multiplier)

        quarantined = retry_count >= max_retries
        if quarantined:
            values["dead_lettered_at"] = now
            values["next_retry_at"] = None

        await self._apply_outcome(session, record, values, owner)
        return quarantined

    async def release(
        self,
        session: AsyncSession,
        event_ids: Sequence[UUID],
        *,
        owner: str | None = None,
    ) -> int:
        """Drop the lease on claimed but unattempted records."""
        if not event_ids:
            return 0
        stmt = update(EventOutbox).where(
            EventOutbox.id.in_(list(event_ids)), EventOutbox.processed_at.is_(None)
        )
        if owner is not None:
            stmt = stmt.where(EventOutbox.locked_by == owner)
        stmt = stmt.values(locked_by=None, locked_until=None).execution_options(
            synchronize_session=False
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def count_pending(self, session: AsyncSession, *, max_retries: int = 3) -> int:
        """Count events still eligible for delivery.

        Useful for monitoring and alerting.
        """
        stmt = select(func.count()).select_from(EventOutbox).where(self._pending_clause(max_retries))
        result = await session.execute(stmt)
        return result.scalar_one()

    async def count_quarantined(self, session: AsyncSession, *, max_retries: int = 3) -> int:
        """Count events excluded from automatic retry.

        These need operator intervention: a fix and a requeue.
        """
        stmt = (
            select(func.count())
            .select_from(EventOutbox)
            .where(self._quarantined_clause(max_retries))
        )
        result = await session.execute(stmt)
        return result.scalar_one()

    async def list_quarantined(
        self,
        session: AsyncSession,
        *,
        max_retries: int = 3,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[EventOutbox]:
        """List quarantined events, oldest first."""
        stmt = (
            select(EventOutbox)
            .where(self._quarantined_clause(max_retries))
            .order_by(EventOutbox.occurred_at.asc(), EventOutbox.sequence.asc(), EventOutbox.id.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def get_stats(self, session: AsyncSession, *, max_retries: int = 3) -> dict[str, Any]:
        """Backlog statistics for dashboards and the ops API."""
        pending = await self.count_pending(session, max_retries=max_retries)
        quarantined = await self.count_quarantined(session, max_retries=max_retries)

        processed_result = await session.execute(
            select(func.count()).select_from(EventOutbox).where(EventOutbox.processed_at.is_not(None))
        )
        oldest_result = await session.execute(
            select(func.min(EventOutbox.occurred_at)).where(self._pending_clause(max_retries))
        )

        processed = processed_result.scalar_one()
        return {
            "pending": pending,
            "processed": processed,
            "quarantined": quarantined,
            "total": pending + processed + quarantined,
            "oldest_pending_at": oldest_result.scalar_one_or_none(),
        }

    async def requeue(self, session: AsyncSession, event_id: UUID) -> bool:
        """Return an undelivered event to the pending set.

        Resets the retry counter and clears quarantine and backoff. A record
        that a publisher is delivering right now (live lease) is left alone.
        The last error is kept for reference until the next attempt.

        Returns:
            False if the event does not exist, is already processed or is
            leased by a publisher
        """
        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == event_id,
                EventOutbox.processed_at.is_(None),
                or_(EventOutbox.locked_until.is_(None), EventOutbox.locked_until < now),
            )
            .values(
                retry_count=0,
                dead_lettered_at=None,
                next_retry_at=None,
                locked_by=None,
                locked_until=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return bool(result.rowcount)

    async def requeue_quarantined(self, session: AsyncSession, *, max_retries: int = 3) -> int:
        """Requeue every quarantined event.

        Returns:
            Number of events requeued
        """
        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(self._quarantined_clause(max_retries))
            .where(or_(EventOutbox.locked_until.is_(None), EventOutbox.locked_until < now))
            .values(
                retry_count=0,
                dead_lettered_at=None,
                next_retry_at=None,
                locked_by=None,
                locked_until=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0


__all__ = ["OutboxRepository"]
