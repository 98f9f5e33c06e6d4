"""Prometheus metrics endpoint for observability.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    Write side:
        - outbox_events_staged_total - Events staged with business changes

    Publisher:
        - outbox_events_claimed_total / outbox_events_delivered_total
        - outbox_delivery_failures_total - Failed attempts by event type and reason
        - outbox_events_quarantined_total - Events that exhausted their retries
        - outbox_dispatch_duration_seconds / outbox_batch_duration_seconds
        - outbox_poll_errors_total - Publisher iterations that failed

    Backlog:
        - outbox_pending_events / outbox_quarantined_events
        - outbox_processor_running

    Application Info:
        - application_info - Service version, name, and environment labels
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from commerce_outbox.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    data = generate_latest(REGISTRY)
    return Response(
        content=data,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
