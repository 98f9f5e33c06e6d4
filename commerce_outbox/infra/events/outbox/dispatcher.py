"""Delivery of a single outbox record to its in-process subscribers.

The dispatcher turns a stored record back into a typed event through the
registry and runs every subscribed handler in order. Any failure surfaces as
an ``OutboxDispatchError`` subclass whose ``reason`` feeds metrics and whose
message is stored in ``last_error``.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from typing import TYPE_CHECKING

from commerce_outbox.core.exceptions import (
    EventDeserializationError,
    HandlerFailedError,
    HandlerTimeoutError,
    NoHandlersRegisteredError,
)
from commerce_outbox.infra.logging import log_context
from commerce_outbox.infra.metrics.prometheus import outbox_dispatch_duration_seconds

if TYPE_CHECKING:
    from commerce_outbox.core.events.base import DomainEvent
    from commerce_outbox.core.events.registry import EventHandler, EventRegistry
    from commerce_outbox.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Deserialize outbox records and invoke their handlers.

    Handlers run sequentially in subscription order; the first failure stops
    the record. Handlers that already ran are re-invoked on the next attempt,
    so subscribers must tolerate repeated delivery.

    Attributes:
        registry: Source of payload classes and handlers
        handler_timeout: Per-handler limit in seconds, None for no limit
    """

    def __init__(
        self,
        registry: EventRegistry,
        *,
        handler_timeout: float | None = 30.0,
        strict_version: bool = False,
    ) -> None:
        self.registry = registry
        self.handler_timeout = handler_timeout
        self.strict_version = strict_version

    def deserialize(self, record: EventOutbox) -> DomainEvent:
        """Rebuild the typed event stored in a record.

        Raises:
            UnknownEventTypeError: If the type tag is not registered.
            EventDeserializationError: If the payload is not valid for its type.
        """
        try:
            data = json.loads(record.payload)
        except json.JSONDecodeError as exc:
            msg = f"Payload for '{record.event_type}' is not valid JSON: {exc}"
            raise EventDeserializationError(msg) from exc

        if not isinstance(data, dict):
            msg = f"Payload for '{record.event_type}' must be a JSON object"
            raise EventDeserializationError(msg)

        return self.registry.deserialize(
            record.event_type,
            data,
            version=record.event_version,
            strict_version=self.strict_version,
        )

    async def dispatch(self, record: EventOutbox) -> None:
        """Deliver one record to all of its handlers.

        Returns normally only if every handler succeeded.

        Raises:
            UnknownEventTypeError: Type tag not in the registry.
            EventDeserializationError: Payload cannot be rebuilt.
            NoHandlersRegisteredError: Type is registered but nobody listens.
            HandlerFailedError: A handler raised or reported failure.
            HandlerTimeoutError: A handler exceeded ``handler_timeout``.
        """
        with log_context(
            outbox_id=str(record.id),
            event_type=record.event_type,
            correlation_id=record.correlation_id,
        ):
            start = time.perf_counter()
            try:
                event = self.deserialize(record)
                handlers = self.registry.handlers_for(record.event_type)
                if not handlers:
                    logger.error("No handlers registered for event type")
                    raise NoHandlersRegisteredError(record.event_type)

                for handler in handlers:
                    await self._invoke(handler, event)
            finally:
                outbox_dispatch_duration_seconds.labels(event_type=record.event_type).observe(
                    time.perf_counter() - start
                )

            logger.debug("Event delivered", extra={"handlers": len(handlers)})

    async def _invoke(self, handler: EventHandler, event: DomainEvent) -> None:
        name = self.registry.name_of(handler)
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                if self.handler_timeout is not None:
                    result = await asyncio.wait_for(result, timeout=self.handler_timeout)
                else:
                    result = await result
        except TimeoutError as exc:
            logger.warning(
                "Event handler timed out",
                extra={"handler": name, "timeout": self.handler_timeout},
            )
            raise HandlerTimeoutError(name, self.handler_timeout or 0.0) from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Event handler raised",
                extra={"handler": name, "error": str(exc), "error_type": type(exc).__name__},
            )
            raise HandlerFailedError(name, f"{type(exc).__name__}: {exc}") from exc

        if result is False:
            logger.warning("Event handler reported failure", extra={"handler": name})
            raise HandlerFailedError(name, "handler reported failure")


__all__ = ["EventDispatcher"]
