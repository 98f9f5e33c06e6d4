"""Operations API for the transactional outbox.

Lets operators inspect the backlog, look at quarantined events, requeue
them once the underlying problem is fixed, and trigger a publisher
iteration by hand.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from commerce_outbox.core.dependencies.database import SessionDep
from commerce_outbox.core.exceptions import AppException, NotFoundException
from commerce_outbox.core.settings import get_outbox_settings
from commerce_outbox.features.outbox.schemas import (
    BatchResultResponse,
    OutboxEventResponse,
    OutboxStatsResponse,
    QuarantinedListResponse,
    RequeueResponse,
)
from commerce_outbox.infra.events.outbox.processor import OutboxProcessor, get_outbox_processor
from commerce_outbox.infra.events.outbox.repository import OutboxRepository

router = APIRouter(prefix="/outbox", tags=["outbox"])

logger = logging.getLogger(__name__)

_repo = OutboxRepository()


def _wake_processor() -> None:
    processor = get_outbox_processor()
    if processor is not None and processor.is_running:
        processor.notify()


@router.get(
    "/stats",
    response_model=OutboxStatsResponse,
    summary="Outbox backlog statistics",
)
async def get_stats(session: SessionDep) -> OutboxStatsResponse:
    """Return pending, processed and quarantined counts."""
    max_retries = get_outbox_settings().max_retries
    stats = await _repo.get_stats(session, max_retries=max_retries)
    processor = get_outbox_processor()
    return OutboxStatsResponse(
        **stats,
        max_retries=max_retries,
        processor_running=processor is not None and processor.is_running,
    )


@router.get(
    "/quarantined",
    response_model=QuarantinedListResponse,
    summary="List quarantined events",
)
async def list_quarantined(
    session: SessionDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> QuarantinedListResponse:
    """List events excluded from automatic retry, oldest first."""
    max_retries = get_outbox_settings().max_retries
    records = await _repo.list_quarantined(
        session, max_retries=max_retries, limit=limit, offset=offset
    )
    total = await _repo.count_quarantined(session, max_retries=max_retries)
    return QuarantinedListResponse(
        items=[OutboxEventResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/events/{event_id}",
    response_model=OutboxEventResponse,
    summary="Get an outbox event",
)
async def get_event(event_id: UUID, session: SessionDep) -> OutboxEventResponse:
    record = await _repo.get(session, event_id)
    if record is None:
        raise NotFoundException(
            detail=f"Outbox event {event_id} not found",
            type="outbox-event-not-found",
            extra={"event_id": str(event_id)},
        )
    return OutboxEventResponse.model_validate(record)


@router.post(
    "/events/{event_id}/requeue",
    response_model=RequeueResponse,
    summary="Requeue an undelivered event",
)
async def requeue_event(event_id: UUID, session: SessionDep) -> RequeueResponse:
    """Reset the retry counter of an undelivered event.

    Processed events are terminal and cannot be requeued. Events a publisher
    is delivering right now are refused until its lease ends.
    """
    record = await _repo.get(session, event_id)
    if record is None:
        raise NotFoundException(
            detail=f"Outbox event {event_id} not found",
            type="outbox-event-not-found",
            extra={"event_id": str(event_id)},
        )
    if record.is_processed:
        raise AppException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Outbox event {event_id} was already delivered",
            type="outbox-event-processed",
            extra={"event_id": str(event_id)},
        )

    requeued = await _repo.requeue(session, event_id)
    await session.commit()
    if not requeued:
        raise AppException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Outbox event {event_id} is being delivered by {record.locked_by}",
            type="outbox-event-in-flight",
            extra={"event_id": str(event_id), "locked_by": record.locked_by},
        )
    logger.info(
        "Outbox event requeued",
        extra={"outbox_id": str(event_id), "event_type": record.event_type},
    )
    _wake_processor()
    return RequeueResponse(requeued=int(requeued))


@router.post(
    "/quarantined/requeue",
    response_model=RequeueResponse,
    summary="Requeue all quarantined events",
)
async def requeue_quarantined(session: SessionDep) -> RequeueResponse:
    count = await _repo.requeue_quarantined(session, max_retries=get_outbox_settings().max_retries)
    await session.commit()
    logger.info("Quarantined outbox events requeued", extra={"count": count})
    if count:
        _wake_processor()
    return RequeueResponse(requeued=count)


@router.post(
    "/process",
    response_model=BatchResultResponse,
    summary="Run one publisher iteration",
)
async def process_batch(request: Request) -> BatchResultResponse:
    """Claim and deliver one batch now.

    Uses the running publisher when there is one, otherwise a transient
    publisher built from settings.
    """
    processor = get_outbox_processor() or OutboxProcessor.from_settings(
        registry=request.app.state.event_registry
    )
    result = await processor.process_batch()
    return BatchResultResponse(**result.as_dict())
