"""Event type registry for deserialization and subscriber routing.

The registry is the explicit, startup-time mapping from a stored type tag to
(a) the payload class used to deserialize it and (b) the subscriber callbacks
that run when the publisher delivers it. Nothing is discovered by reflection:
a tag that is not declared here cannot be delivered.

Usage:
    from commerce_outbox.core.events import DomainEvent, event_registry

    @event_registry.register
    class OrderPlaced(DomainEvent):
        event_type: ClassVar[str] = "order.placed"
        order_id: str

    @event_registry.subscribe(OrderPlaced)
    async def invalidate_order_cache(event: OrderPlaced) -> None:
        await cache.delete(f"order:{event.order_id}")

    # Or declare everything in one static mapping at startup
    event_registry.register_mapping({
        OrderPlaced: [invalidate_order_cache, send_confirmation_email],
        StockMoved: [record_stock_statistics],
    })

    event_registry.validate()
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar, overload

from pydantic import ValidationError

from commerce_outbox.core.exceptions import (
    EventDeserializationError,
    RegistryConfigurationError,
    UnknownEventTypeError,
)

if TYPE_CHECKING:
    from commerce_outbox.core.events.base import DomainEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="DomainEvent")

# A subscriber receives the deserialized event. Returning False reports
# failure; returning None or True (or nothing) is success.
EventHandler = Callable[[Any], Awaitable[bool | None] | bool | None]


def handler_name(handler: EventHandler) -> str:
    """Readable name for a handler, used in logs and ``last_error``."""
    name = getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None)
    if name is None:
        name = type(handler).__qualname__
    module = getattr(handler, "__module__", None)
    return f"{module}.{name}" if module else name


class EventRegistry:
    """Registry for domain event types and their subscribers.

    Maintains a mapping of event type strings to event classes (per version)
    and an ordered list of handlers per event type. Handlers run in the order
    they were subscribed.

    Registration is expected during startup; reads are safe afterwards.
    """

    def __init__(self) -> None:
        # Map: event_type -> version -> event_class
        self._events: dict[str, dict[int, type[DomainEvent]]] = {}
        # Map: event_type -> latest version number
        self._latest_versions: dict[str, int] = {}
        # Map: event_type -> handlers in subscription order
        self._handlers: dict[str, list[EventHandler]] = {}
        # Map: id(handler) -> explicit name given at subscription
        self._handler_names: dict[int, str] = {}

    # ------------------------------------------------------------------
    # Payload types
    # ------------------------------------------------------------------

    @overload
    def register(self, event_class: type[T]) -> type[T]: ...

    @overload
    def register(self, event_class: None = None) -> Callable[[type[T]], type[T]]: ...

    def register(self, event_class: type[T] | None = None) -> type[T] | Any:
        """Register an event class in the registry.

        Can be used as a decorator (with or without parentheses) or as a
        direct method call. Registering the same class twice is a no-op.

        Raises:
            RegistryConfigurationError: If a different class is already
                registered for the same type and version.
        """

        def _register(cls: type[T]) -> type[T]:
            event_type = cls.get_event_type()
            event_version = cls.get_event_version()

            versions = self._events.setdefault(event_type, {})
            existing = versions.get(event_version)
            if existing is not None:
                if existing is not cls:
                    msg = (
                        f"Event type '{event_type}' version {event_version} "
                        f"already registered with {existing.__name__}"
                    )
                    raise RegistryConfigurationError(msg)
                return cls

            versions[event_version] = cls
            self._handlers.setdefault(event_type, [])

            if event_version > self._latest_versions.get(event_type, 0):
                self._latest_versions[event_type] = event_version

            logger.debug(
                "Registered event type",
                extra={
                    "event_type": event_type,
                    "version": event_version,
                    "class": cls.__name__,
                },
            )
            return cls

        if event_class is None:
            return _register
        return _register(event_class)

    def get(
        self,
        event_type: str,
        version: int | None = None,
    ) -> type[DomainEvent] | None:
        """Get an event class by type and optional version (latest if None)."""
        versions = self._events.get(event_type)
        if not versions:
            return None

        if version is not None:
            return versions.get(version)

        latest_version = self._latest_versions.get(event_type)
        if latest_version is None:
            return None
        return versions.get(latest_version)

    def get_or_raise(
        self,
        event_type: str,
        version: int | None = None,
    ) -> type[DomainEvent]:
        """Get an event class or raise if not found.

        Raises:
            UnknownEventTypeError: If event type/version not found
        """
        event_class = self.get(event_type, version)
        if event_class is None:
            raise UnknownEventTypeError(event_type, version)
        return event_class

    def resolve(
        self,
        event_type: str,
        version: int | None = None,
        *,
        strict_version: bool = False,
    ) -> type[DomainEvent]:
        """Resolve the payload class for a stored record.

        Tries the exact version first. Unless ``strict_version`` is set, falls
        back to the latest registered version for forward compatibility.

        Raises:
            UnknownEventTypeError: If nothing matches.
        """
        event_class = self.get(event_type, version)

        if event_class is None and version is not None and not strict_version:
            event_class = self.get(event_type)
            if event_class is not None:
                logger.warning(
                    "Using latest version for deserialization",
                    extra={
                        "event_type": event_type,
                        "requested_version": version,
                        "using_version": event_class.get_event_version(),
                    },
                )

        if event_class is None:
            raise UnknownEventTypeError(event_type, version)
        return event_class

    def deserialize(
        self,
        event_type: str,
        data: Mapping[str, Any],
        *,
        version: int | None = None,
        strict_version: bool = False,
    ) -> DomainEvent:
        """Rebuild an event instance from stored payload data.

        Raises:
            UnknownEventTypeError: If the type tag is not registered.
            EventDeserializationError: If the data does not match the schema.
        """
        event_class = self.resolve(event_type, version, strict_version=strict_version)
        try:
            return event_class.model_validate(dict(data))
        except ValidationError as exc:
            msg = (
                f"Payload for '{event_type}' does not match "
                f"{event_class.__name__}: {exc.error_count()} validation error(s): "
                f"{exc.errors(include_url=False)}"
            )
            raise EventDeserializationError(msg) from exc

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        event: str | type[DomainEvent],
        handler: EventHandler | None = None,
        *,
        name: str | None = None,
    ) -> Any:
        """Subscribe a handler to an event type.

        Can be used as a decorator or as a direct call. The event type must
        already be registered, so that typos fail at startup rather than at
        delivery time. ``name`` overrides the label used for the handler in
        logs and recorded delivery errors.

        Example:
            event_registry.subscribe("order.placed", send_confirmation_email)

            @event_registry.subscribe(OrderPlaced)
            async def update_statistics(event: OrderPlaced) -> None: ...

        Raises:
            RegistryConfigurationError: If the event type is not registered.
        """
        if isinstance(event, str):
            event_type = event
        else:
            self.register(event)
            event_type = event.get_event_type()

        if event_type not in self._events:
            msg = (
                f"Cannot subscribe to unregistered event type '{event_type}'; "
                "register its payload class first"
            )
            raise RegistryConfigurationError(msg)

        def _subscribe(fn: EventHandler) -> EventHandler:
            handlers = self._handlers.setdefault(event_type, [])
            if name is not None:
                self._handler_names[id(fn)] = name
            if fn not in handlers:
                handlers.append(fn)
                logger.debug(
                    "Subscribed event handler",
                    extra={"event_type": event_type, "handler": self.name_of(fn)},
                )
            return fn

        if handler is None:
            return _subscribe
        return _subscribe(handler)

    def register_mapping(
        self,
        mapping: Mapping[type[DomainEvent], Iterable[EventHandler]],
    ) -> None:
        """Register payload classes and their handlers from a static mapping."""
        for event_class, handlers in mapping.items():
            self.register(event_class)
            for fn in handlers:
                self.subscribe(event_class, fn)

    def name_of(self, handler: EventHandler) -> str:
        """Label for a handler: its subscription name, else its import path."""
        return self._handler_names.get(id(handler)) or handler_name(handler)

    def handlers_for(self, event_type: str) -> tuple[EventHandler, ...]:
        """Handlers subscribed to an event type, in subscription order."""
        return tuple(self._handlers.get(event_type, ()))

    def unhandled_types(self) -> list[str]:
        """Registered event types with no subscribers."""
        return sorted(t for t in self._events if not self._handlers.get(t))

    def validate(self, *, strict: bool = False) -> list[str]:
        """Check the registry at startup.

        Every registered type without a subscriber is logged as a
        configuration error: its records would never be delivered.

        Args:
            strict: Raise instead of only logging.

        Returns:
            The event types without handlers.

        Raises:
            RegistryConfigurationError: If ``strict`` and any type is unhandled.
        """
        unhandled = self.unhandled_types()
        for event_type in unhandled:
            logger.error(
                "Event type has no registered handlers; its outbox records will be quarantined",
                extra={"event_type": event_type},
            )
        if unhandled and strict:
            msg = f"Event types without handlers: {', '.join(unhandled)}"
            raise RegistryConfigurationError(msg)

        logger.info(
            "Event registry validated",
            extra={
                "event_types": len(self._events),
                "handlers": sum(len(h) for h in self._handlers.values()),
                "unhandled": len(unhandled),
            },
        )
        return unhandled

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def list_types(self) -> list[str]:
        """List all registered event types."""
        return list(self._events.keys())

    def list_versions(self, event_type: str) -> list[int]:
        """List all registered versions for an event type, ascending."""
        if event_type not in self._events:
            return []
        return sorted(self._events[event_type].keys())

    def get_latest_version(self, event_type: str) -> int | None:
        """Get the latest version number for an event type."""
        return self._latest_versions.get(event_type)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._events

    def __len__(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        """Clear all registrations (mainly for testing)."""
        self._events.clear()
        self._latest_versions.clear()
        self._handlers.clear()
        self._handler_names.clear()


# Global registry instance
event_registry = EventRegistry()


def import_handler_modules(modules: Iterable[str]) -> list[str]:
    """Import modules whose import registers event types and handlers.

    Raises:
        RegistryConfigurationError: If a module cannot be imported.
    """
    imported = []
    for module in modules:
        try:
            importlib.import_module(module)
        except ImportError as exc:
            msg = f"Cannot import event handler module '{module}': {exc}"
            raise RegistryConfigurationError(msg) from exc
        imported.append(module)
    if imported:
        logger.info("Event handler modules imported", extra={"modules": imported})
    return imported


__all__ = [
    "EventHandler",
    "EventRegistry",
    "event_registry",
    "handler_name",
    "import_handler_modules",
]
