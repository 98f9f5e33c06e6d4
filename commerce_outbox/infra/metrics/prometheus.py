"""Prometheus metrics for the transactional outbox."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

# Custom registry so only outbox/service metrics are exported
REGISTRY = CollectorRegistry()

# Handler latencies range from in-memory cache invalidation to email sends
DISPATCH_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)

application_info = Info(
    "application",
    "Service name, version and environment",
    registry=REGISTRY,
)

# Write side
outbox_events_staged_total = Counter(
    "outbox_events_staged_total",
    "Events serialized into the outbox within a business transaction",
    ["event_type"],
    registry=REGISTRY,
)

# Publisher
outbox_events_claimed_total = Counter(
    "outbox_events_claimed_total",
    "Outbox records claimed by the publisher",
    registry=REGISTRY,
)

outbox_events_delivered_total = Counter(
    "outbox_events_delivered_total",
    "Outbox records delivered to all subscribers",
    ["event_type"],
    registry=REGISTRY,
)

outbox_delivery_failures_total = Counter(
    "outbox_delivery_failures_total",
    "Failed delivery attempts",
    ["event_type", "reason"],
    registry=REGISTRY,
)

outbox_events_quarantined_total = Counter(
    "outbox_events_quarantined_total",
    "Outbox records that exhausted their retries",
    ["event_type"],
    registry=REGISTRY,
)

outbox_dispatch_duration_seconds = Histogram(
    "outbox_dispatch_duration_seconds",
    "Time spent dispatching one record to its subscribers",
    ["event_type"],
    buckets=DISPATCH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_batch_duration_seconds = Histogram(
    "outbox_batch_duration_seconds",
    "Time spent processing one publisher batch",
    buckets=DISPATCH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_poll_errors_total = Counter(
    "outbox_poll_errors_total",
    "Publisher iterations that failed (e.g. database unavailable)",
    registry=REGISTRY,
)

# Backlog gauges, refreshed by the publisher and the operational endpoints
outbox_pending_events = Gauge(
    "outbox_pending_events",
    "Undelivered outbox records still eligible for delivery",
    registry=REGISTRY,
)

outbox_quarantined_events = Gauge(
    "outbox_quarantined_events",
    "Undelivered outbox records excluded from automatic retry",
    registry=REGISTRY,
)

outbox_processor_running = Gauge(
    "outbox_processor_running",
    "1 while the background publisher loop is running",
    registry=REGISTRY,
)
