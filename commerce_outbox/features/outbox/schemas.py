"""Pydantic schemas for the outbox operations API."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutboxEventResponse(BaseModel):
    """A single outbox record as seen by operators."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    event_version: int
    status: str = Field(description="pending, processed or quarantined")
    payload: dict[str, Any]
    occurred_at: datetime
    sequence: int
    correlation_id: str | None = None
    aggregate_type: str | None = None
    aggregate_id: str | None = None
    processed_at: datetime | None = None
    retry_count: int
    last_error: str | None = None
    next_retry_at: datetime | None = None
    dead_lettered_at: datetime | None = None
    locked_by: str | None = None
    locked_until: datetime | None = None
    created_at: datetime | None = None

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError:
                return {"raw": value}
            return decoded if isinstance(decoded, dict) else {"value": decoded}
        return value


class OutboxStatsResponse(BaseModel):
    """Backlog counters and publisher state."""

    pending: int
    processed: int
    quarantined: int
    total: int
    oldest_pending_at: datetime | None = None
    max_retries: int
    processor_running: bool


class QuarantinedListResponse(BaseModel):
    items: list[OutboxEventResponse]
    total: int
    limit: int
    offset: int


class RequeueResponse(BaseModel):
    requeued: int = Field(description="Number of events returned to the pending set")


class BatchResultResponse(BaseModel):
    """Outcome of one manually triggered publisher iteration."""

    claimed: int
    delivered: int
    failed: int
    quarantined: int
    released: int = 0
    skipped: int = 0
