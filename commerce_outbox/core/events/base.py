"""Domain event base class with versioning and causation tracking.

Domain events represent something meaningful that happened in the commerce
domain (an order was placed, stock moved, a coupon was redeemed). They are
captured by aggregates while business state changes, written to the outbox in
the same transaction, and later dispatched to in-process subscribers.

Key features:
- Event versioning for schema evolution
- Causation tracking (which event caused this event)
- Correlation IDs for distributed tracing
- Automatic capture timestamp and time-sortable ID
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from commerce_outbox.core.database.utils import generate_uuid7


class DomainEvent(BaseModel):
    """Base class for all domain events.

    Subclasses must define:
    - event_type: ClassVar[str] - Unique type tag (e.g., "order.placed")
    - event_version: ClassVar[int] - Schema version for evolution (default: 1)

    Intermediate base classes that should not carry a type tag set
    ``__abstract__ = True`` in their body.

    Example:
        class OrderPlaced(DomainEvent):
            event_type: ClassVar[str] = "order.placed"
            event_version: ClassVar[int] = 1

            order_id: str
            total_cents: int

        event = OrderPlaced(order_id="123", total_cents=4999)

    Attributes:
        event_id: Unique identifier for this event instance (UUID v7)
        occurred_at: When the business operation captured the event (UTC)
        correlation_id: ID linking related events across operations
        causation_id: ID of the event that caused this event
        metadata: Additional context (user_id, request_id, etc.)
    """

    event_type: ClassVar[str] = "domain.event"
    event_version: ClassVar[int] = 1

    event_id: str = Field(
        default_factory=lambda: str(generate_uuid7()),
        description="Unique event identifier (UUID v7 for time-ordering)",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Capture timestamp in UTC",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for distributed tracing",
    )
    causation_id: str | None = Field(
        default=None,
        description="ID of the event that caused this event",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event metadata",
    )

    model_config = ConfigDict(
        frozen=True,  # Events are immutable
        str_strip_whitespace=True,
        extra="forbid",
    )

    @field_validator("occurred_at")
    @classmethod
    def _normalize_occurred_at(cls, value: datetime) -> datetime:
        """Store capture times as aware UTC; naive values are taken as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Validate subclass has required class variables."""
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get("__abstract__", False):
            return
        if not getattr(cls, "event_type", None) or cls.event_type == "domain.event":
            msg = f"{cls.__name__} must define 'event_type' class variable"
            raise TypeError(msg)

    @classmethod
    def get_event_type(cls) -> str:
        """Get the event type identifier."""
        return cls.event_type

    @classmethod
    def get_event_version(cls) -> int:
        """Get the event schema version."""
        return cls.event_version

    @classmethod
    def get_qualified_type(cls) -> str:
        """Get fully qualified event type with version.

        Returns:
            String in format "event_type:v{version}" (e.g., "order.placed:v1")
        """
        return f"{cls.event_type}:v{cls.event_version}"

    def with_causation(self, causing_event: DomainEvent) -> DomainEvent:
        """Create a copy of this event with causation tracking.

        Sets the causation_id to the causing event's ID and inherits
        the correlation_id if not already set.
        """
        updates: dict[str, Any] = {"causation_id": causing_event.event_id}
        if self.correlation_id is None and causing_event.correlation_id:
            updates["correlation_id"] = causing_event.correlation_id
        return self.model_copy(update=updates)

    def with_correlation(self, correlation_id: str) -> DomainEvent:
        """Create a copy of this event with a correlation ID."""
        return self.model_copy(update={"correlation_id": correlation_id})

    def with_metadata(self, **kwargs: Any) -> DomainEvent:
        """Create a copy of this event with additional metadata."""
        new_metadata = {**self.metadata, **kwargs}
        return self.model_copy(update={"metadata": new_metadata})

    def to_outbox_payload(self) -> dict[str, Any]:
        """Serialize event data for outbox storage.

        The type tag and version are stored in their own columns, so the
        payload holds only the instance fields.

        Raises:
            pydantic_core.PydanticSerializationError: If a value (usually in
                ``metadata``) is not JSON-serializable.
        """
        return self.model_dump(mode="json")

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"event_id={self.event_id!r}, "
            f"event_type={self.event_type!r}, "
            f"occurred_at={self.occurred_at.isoformat()}"
            f")"
        )


__all__ = ["DomainEvent"]
