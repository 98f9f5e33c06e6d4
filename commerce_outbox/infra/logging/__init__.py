"""Structured logging: JSONL formatting, context propagation and queue-based handlers.

Usage:
    from commerce_outbox.infra.logging import log_context, setup_logging

    setup_logging()

    with log_context(outbox_id=str(record.id)):
        logger.info("Delivering event")
"""

from commerce_outbox.infra.logging.config import configure_logging, setup_logging, shutdown
from commerce_outbox.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    remove_from_log_context,
    set_log_context,
)
from commerce_outbox.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
