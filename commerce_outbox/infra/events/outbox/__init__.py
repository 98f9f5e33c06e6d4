"""Transactional outbox pattern implementation.

The outbox pattern ensures reliable in-process event delivery by:
1. Writing events to a database table in the same transaction as domain changes
2. Processing the outbox table asynchronously, dispatching to registered handlers
3. Marking events as processed once every handler succeeded

This guarantees at-least-once delivery semantics.
"""

from commerce_outbox.infra.events.outbox.dispatcher import EventDispatcher
from commerce_outbox.infra.events.outbox.models import EventOutbox
from commerce_outbox.infra.events.outbox.processor import (
    BatchResult,
    OutboxProcessor,
    get_outbox_processor,
    start_outbox_processor,
    stop_outbox_processor,
)
from commerce_outbox.infra.events.outbox.repository import OutboxRepository

__all__ = [
    "BatchResult",
    "EventDispatcher",
    "EventOutbox",
    "OutboxProcessor",
    "OutboxRepository",
    "get_outbox_processor",
    "start_outbox_processor",
    "stop_outbox_processor",
]
