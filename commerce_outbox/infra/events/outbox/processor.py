"""Background outbox publisher for reliable in-process event delivery.

The processor runs as a background task that:
1. Claims a batch of undelivered events from the outbox table
2. Dispatches each event to its registered subscribers
3. Records the outcome of each event in its own transaction

The processor uses:
- FOR UPDATE SKIP LOCKED plus a lease so several instances can run
- Per-record commits, so one bad event never rolls back another's outcome
- A wake-up signal so freshly committed events skip the poll interval
- Per-record lease renewal, so a record taken over by another instance is skipped
- Graceful shutdown that releases claimed but unattempted events
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from commerce_outbox.core.exceptions import LeaseLostError, OutboxDispatchError
from commerce_outbox.core.settings import get_outbox_settings
from commerce_outbox.infra.events.outbox.dispatcher import EventDispatcher
from commerce_outbox.infra.events.outbox.repository import OutboxRepository
from commerce_outbox.infra.metrics.prometheus import (
    outbox_batch_duration_seconds,
    outbox_delivery_failures_total,
    outbox_events_claimed_total,
    outbox_events_delivered_total,
    outbox_events_quarantined_total,
    outbox_pending_events,
    outbox_poll_errors_total,
    outbox_processor_running,
    outbox_quarantined_events,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from commerce_outbox.core.events.registry import EventRegistry
    from commerce_outbox.core.settings import OutboxSettings
    from commerce_outbox.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)

# Global processor instance
_processor: OutboxProcessor | None = None


@dataclass(slots=True)
class BatchResult:
    """Outcome counts of one publisher iteration."""

    claimed: int = 0
    delivered: int = 0
    failed: int = 0
    quarantined: int = 0
    released: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "claimed": self.claimed,
            "delivered": self.delivered,
            "failed": self.failed,
            "quarantined": self.quarantined,
            "released": self.released,
            "skipped": self.skipped,
        }


class OutboxProcessor:
    """Background publisher for outbox events.

    Polls the outbox table and delivers events to the handlers registered
    in an ``EventRegistry``. Failed events are retried on later polls until
    ``max_retries`` attempts have failed, after which they are quarantined.

    Attributes:
        batch_size: Number of events to claim per iteration
        poll_interval: Seconds between polls when the last batch was not full
        max_retries: Failed attempts before an event is quarantined
    """

    def __init__(
        self,
        registry: EventRegistry,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        batch_size: int = 20,
        poll_interval: float = 5.0,
        max_retries: int = 3,
        handler_timeout: float | None = 30.0,
        retry_backoff_seconds: float = 0.0,
        lease_seconds: float = 60.0,
        instance_id: str = "outbox-publisher",
        shutdown_timeout: float = 30.0,
        error_max_length: int = 1000,
    ) -> None:
        """Initialize the outbox processor.

        Args:
            registry: Event types and their handlers
            session_factory: Session factory; the process default if None
            batch_size: Events to claim per iteration
            poll_interval: Seconds between polls when idle
            max_retries: Failed attempts before quarantine
            handler_timeout: Per-handler timeout in seconds, None for no limit
            retry_backoff_seconds: Base for exponential retry delay, 0 for none
            lease_seconds: Claim duration honoured by other instances
            instance_id: Identity recorded on claimed events
            shutdown_timeout: Seconds stop() waits before cancelling
            error_max_length: Truncation limit for stored errors
        """
        self.registry = registry
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.lease_seconds = lease_seconds
        self.instance_id = instance_id
        self.shutdown_timeout = shutdown_timeout
        self.error_max_length = error_max_length

        self._session_factory = session_factory
        self._dispatcher = EventDispatcher(registry, handler_timeout=handler_timeout)
        self._repo = OutboxRepository()

        self._running = False
        self._stopping = False
        self._task: asyncio.Task[None] | None = None
        self._wakeup = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        settings: OutboxSettings | None = None,
        *,
        registry: EventRegistry | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        **overrides: Any,
    ) -> OutboxProcessor:
        """Build a processor from ``OutboxSettings`` (OUTBOX_* environment)."""
        settings = settings or get_outbox_settings()
        if registry is None:
            from commerce_outbox.core.events.registry import event_registry

            registry = event_registry

        options: dict[str, Any] = {
            "batch_size": settings.batch_size,
            "poll_interval": settings.poll_interval,
            "max_retries": settings.max_retries,
            "handler_timeout": settings.effective_handler_timeout,
            "retry_backoff_seconds": settings.retry_backoff_seconds,
            "lease_seconds": settings.lease_seconds,
            "instance_id": settings.instance_id,
            "shutdown_timeout": settings.shutdown_timeout,
            "error_max_length": settings.error_max_length,
        }
        options.update(overrides)
        return cls(registry, session_factory=session_factory, **options)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from commerce_outbox.infra.database.session import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop in the current event loop."""
        if self._running:
            logger.warning("Outbox processor already running")
            return

        self._running = True
        self._stopping = False
        self._wakeup.clear()
        self._task = asyncio.create_task(self._run_loop(), name="outbox-processor")
        outbox_processor_running.set(1)
        logger.info(
            "Outbox processor started",
            extra={
                "instance_id": self.instance_id,
                "batch_size": self.batch_size,
                "poll_interval": self.poll_interval,
                "max_retries": self.max_retries,
            },
        )

    async def stop(self) -> None:
        """Stop the background loop gracefully.

        The event being delivered finishes; the rest of the batch is
        released for the next run. If that takes longer than
        ``shutdown_timeout`` the loop is cancelled.
        """
        if not self._running:
            return

        self._running = False
        self._stopping = True
        self._wakeup.set()

        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.shutdown_timeout)
            except TimeoutError:
                logger.warning("Outbox processor shutdown timed out, cancelling")
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._task = None

        outbox_processor_running.set(0)
        logger.info("Outbox processor stopped", extra={"instance_id": self.instance_id})

    def notify(self) -> None:
        """Wake the loop so newly committed events skip the poll interval."""
        self._wakeup.set()

    async def _wait(self, timeout: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        self._wakeup.clear()

    async def _run_loop(self) -> None:
        """Main processing loop."""
        while self._running:
            try:
                result = await self.process_batch()
            except asyncio.CancelledError:
                logger.info("Outbox processor loop cancelled")
                raise
            except Exception:
                logger.exception("Error in outbox processor loop")
                outbox_poll_errors_total.inc()
                await self._wait(self.poll_interval)
                continue

            if not self._running:
                break
            if result.claimed >= self.batch_size:
                # More events might be waiting; yield and continue immediately
                await asyncio.sleep(0)
            else:
                await self._wait(self.poll_interval)

    async def process_batch(self) -> BatchResult:
        """Claim and deliver one batch of pending events.

        The lease is renewed right before each record is dispatched. A record
        whose lease was taken over by another instance while earlier records
        were being delivered is skipped, so no record is dispatched by two
        publishers at once as long as ``lease_seconds`` exceeds the longest
        single dispatch.

        Usable without ``start()`` (CLI, ops API, tests).

        Returns:
            Counts of claimed, delivered, failed, quarantined and skipped events
        """
        result = BatchResult()
        start = time.perf_counter()

        async with self.session_factory() as session:
            records = await self._repo.claim_pending(
                session,
                batch_size=self.batch_size,
                max_retries=self.max_retries,
                owner=self.instance_id,
                lease_seconds=self.lease_seconds,
            )
            await session.commit()

            result.claimed = len(records)
            if records:
                outbox_events_claimed_total.inc(len(records))
                logger.debug("Processing outbox batch", extra={"batch_size": len(records)})

            for index, record in enumerate(records):
                if self._stopping:
                    remaining = [r.id for r in records[index:]]
                    result.released = await self._repo.release(
                        session, remaining, owner=self.instance_id
                    )
                    await session.commit()
                    logger.info(
                        "Released unattempted outbox events on shutdown",
                        extra={"released": result.released},
                    )
                    break

                renewed = await self._repo.renew_lease(
                    session, record, owner=self.instance_id, lease_seconds=self.lease_seconds
                )
                await session.commit()
                if not renewed:
                    self._skip(record, result)
                    continue
                await self._deliver(session, record, result)

            await self._refresh_backlog(session)

        if records:
            outbox_batch_duration_seconds.observe(time.perf_counter() - start)
            logger.info("Outbox batch processed", extra=result.as_dict())

        return result

    def _skip(self, record: EventOutbox, result: BatchResult) -> None:
        result.skipped += 1
        logger.warning(
            "Outbox event lease lost, skipping",
            extra={
                "outbox_id": str(record.id),
                "event_type": record.event_type,
                "instance_id": self.instance_id,
            },
        )

    async def _deliver(self, session: AsyncSession, record: EventOutbox, result: BatchResult) -> None:
        """Dispatch one record and commit its outcome."""
        try:
            await self._dispatcher.dispatch(record)
        except OutboxDispatchError as exc:
            reason = exc.reason
            error = str(exc)
        except Exception as exc:
            reason = "unexpected"
            error = f"{type(exc).__name__}: {exc}"
        else:
            try:
                await self._repo.mark_processed(session, record, owner=self.instance_id)
            except LeaseLostError:
                await session.commit()
                self._skip(record, result)
                return
            await session.commit()
            result.delivered += 1
            outbox_events_delivered_total.labels(event_type=record.event_type).inc()
            return

        try:
            quarantined = await self._repo.mark_failed(
                session,
                record,
                error,
                max_retries=self.max_retries,
                retry_backoff_seconds=self.retry_backoff_seconds,
                error_max_length=self.error_max_length,
                owner=self.instance_id,
            )
        except LeaseLostError:
            await session.commit()
            self._skip(record, result)
            return
        await session.commit()

        result.failed += 1
        outbox_delivery_failures_total.labels(event_type=record.event_type, reason=reason).inc()

        log_extra = {
            "outbox_id": str(record.id),
            "event_type": record.event_type,
            "correlation_id": record.correlation_id,
            "retry_count": record.retry_count,
            "reason": reason,
            "error": record.last_error,
        }
        if quarantined:
            result.quarantined += 1
            outbox_events_quarantined_total.labels(event_type=record.event_type).inc()
            logger.error("Outbox event quarantined after exhausting retries", extra=log_extra)
        else:
            logger.warning("Failed to deliver outbox event, will retry", extra=log_extra)

    async def _refresh_backlog(self, session: AsyncSession) -> None:
        outbox_pending_events.set(
            await self._repo.count_pending(session, max_retries=self.max_retries)
        )
        outbox_quarantined_events.set(
            await self._repo.count_quarantined(session, max_retries=self.max_retries)
        )


async def start_outbox_processor(
    settings: OutboxSettings | None = None,
    *,
    registry: EventRegistry | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> OutboxProcessor | None:
    """Start the global outbox processor unless disabled by settings."""
    global _processor

    settings = settings or get_outbox_settings()
    if not settings.enabled:
        logger.info("Outbox processor disabled, skipping start")
        return None

    if _processor is not None and _processor.is_running:
        return _processor

    _processor = OutboxProcessor.from_settings(
        settings,
        registry=registry,
        session_factory=session_factory,
    )
    await _processor.start()
    return _processor


async def stop_outbox_processor() -> None:
    """Stop the global outbox processor."""
    global _processor

    if _processor is not None:
        await _processor.stop()
        _processor = None


def get_outbox_processor() -> OutboxProcessor | None:
    """Get the global outbox processor instance."""
    return _processor


__all__ = [
    "BatchResult",
    "OutboxProcessor",
    "get_outbox_processor",
    "start_outbox_processor",
    "stop_outbox_processor",
]
