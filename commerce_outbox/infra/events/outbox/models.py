"""EventOutbox SQLAlchemy model for the transactional outbox pattern.

The outbox table stores events that must be delivered to in-process
subscribers. Rows are written in the same transaction as the business
changes that produced them, so a row existing at all implies the business
change is durable.

The background publisher claims undelivered rows, dispatches them and
records the outcome: ``processed_at`` on success, or ``retry_count`` and
``last_error`` on failure. Rows that exhaust their retries get
``dead_lettered_at`` and are no longer selected (quarantine).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from commerce_outbox.core.database.base import Base, TimestampMixin, UUIDv7PKMixin

STATUS_PENDING = "pending"
STATUS_PROCESSED = "processed"
STATUS_QUARANTINED = "quarantined"


class EventOutbox(Base, UUIDv7PKMixin, TimestampMixin):
    """Outbox table for reliable in-process event delivery.

    Attributes:
        id: UUID v7 primary key
        event_type: Type tag used to deserialize and route (e.g., "order.placed")
        event_version: Schema version of the payload
        payload: JSON-serialized event data, immutable once written
        occurred_at: When the business operation captured the event
        sequence: Position of the event within its originating transaction
        correlation_id: Distributed tracing correlation ID
        aggregate_type: Aggregate type (e.g., "Order")
        aggregate_id: Aggregate ID
        processed_at: When all subscribers succeeded (terminal)
        retry_count: Number of failed delivery attempts
        last_error: Last failure reason, cleared on success
        next_retry_at: Earliest time of the next attempt when backoff is enabled
        dead_lettered_at: When the record exhausted its retries
        locked_by: Publisher instance currently holding the record
        locked_until: Lease expiry of the current claim
    """

    __tablename__ = "event_outbox"

    # Event identification
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Event type tag",
    )
    event_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Event schema version",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-serialized event data",
    )

    # Ordering
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the event was captured",
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Position within the originating transaction",
    )

    # Tracing and aggregate context
    correlation_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True,
        comment="Distributed tracing correlation ID",
    )
    aggregate_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Aggregate type (e.g., Order, Cart)",
    )
    aggregate_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Aggregate ID",
    )

    # Delivery bookkeeping
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the event was delivered to all subscribers",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Number of failed delivery attempts",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last delivery error",
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Scheduled time for next retry attempt",
    )
    dead_lettered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="When the event exhausted its retries",
    )

    # Publisher lease
    locked_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Publisher instance holding the claim",
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Claim expiry",
    )

    __table_args__ = (
        # Index for fetching undelivered events in order
        Index(
            "ix_event_outbox_pending",
            "processed_at",
            "occurred_at",
            "sequence",
            postgresql_where=(processed_at.is_(None)),
        ),
        # Index for per-aggregate inspection
        Index(
            "ix_event_outbox_aggregate",
            "aggregate_type",
            "aggregate_id",
            "occurred_at",
        ),
    )

    @property
    def is_processed(self) -> bool:
        """Check if event has been delivered."""
        return self.processed_at is not None

    @property
    def is_quarantined(self) -> bool:
        """Check if event was excluded from automatic retry."""
        return not self.is_processed and self.dead_lettered_at is not None

    @property
    def status(self) -> str:
        if self.is_processed:
            return STATUS_PROCESSED
        if self.is_quarantined:
            return STATUS_QUARANTINED
        return STATUS_PENDING

    def __repr__(self) -> str:
        status = self.status
        if status == STATUS_PENDING:
            status = f"pending (retries={self.retry_count})"
        return (
            f"EventOutbox("
            f"id={self.id}, "
            f"event_type={self.event_type!r}, "
            f"status={status}"
            f")"
        )


__all__ = [
    "STATUS_PENDING",
    "STATUS_PROCESSED",
    "STATUS_QUARANTINED",
    "EventOutbox",
]
