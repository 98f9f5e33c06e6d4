"""Custom exception classes for the outbox service."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base HTTP-facing application exception.

    Follows RFC 7807 Problem Details for HTTP APIs.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """Exception raised when a resource is not found.

    Example:
        raise NotFoundException(
            detail="Outbox record abc123 not found",
            type="outbox-record-not-found",
            extra={"record_id": "abc123"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class ServiceUnavailableException(AppException):
    """Exception raised when a required component is not running."""

    def __init__(
        self,
        detail: str,
        type: str = "service-unavailable",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=503,
            detail=detail,
            type=type,
            title="Service Unavailable",
            extra=extra,
        )


# ============================================================================
# Outbox subsystem
# ============================================================================


class OutboxError(Exception):
    """Base class for transactional outbox errors."""


class EventSerializationError(OutboxError):
    """An event could not be serialized into an outbox record.

    Raised on the write path. It must propagate out of the unit of work so the
    business transaction rolls back together with the event.
    """

    def __init__(self, event_type: str, detail: str) -> None:
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Cannot serialize event '{event_type}': {detail}")


class RegistryConfigurationError(OutboxError):
    """The dispatch registry was configured inconsistently at startup."""


class OutboxDispatchError(OutboxError):
    """Delivery of a single outbox record failed.

    These are recorded on the record (``retry_count``/``last_error``) and never
    escape the publisher loop.

    Attributes:
        reason: Short machine-readable cause, used as a metric label.
    """

    reason = "dispatch_error"


class UnknownEventTypeError(OutboxDispatchError):
    """The stored type tag has no registered payload class."""

    reason = "unknown_type"

    def __init__(self, event_type: str, version: int | None = None) -> None:
        self.event_type = event_type
        self.version = version
        version_str = f" version {version}" if version is not None else ""
        super().__init__(f"Unknown event type: '{event_type}'{version_str}")


class EventDeserializationError(OutboxDispatchError):
    """The stored payload does not match the registered payload schema."""

    reason = "deserialization"


class NoHandlersRegisteredError(OutboxDispatchError):
    """The type tag resolves but nothing subscribes to it."""

    reason = "no_handlers"

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"No handlers registered for event type '{event_type}'")


class HandlerFailedError(OutboxDispatchError):
    """A subscriber raised or reported failure."""

    reason = "handler_error"

    def __init__(self, handler_name: str, detail: str) -> None:
        self.handler_name = handler_name
        self.detail = detail
        super().__init__(f"Handler '{handler_name}' failed: {detail}")


class HandlerTimeoutError(HandlerFailedError):
    """A subscriber did not finish within the per-handler timeout."""

    reason = "handler_timeout"

    def __init__(self, handler_name: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(handler_name, f"timed out after {timeout:g}s")


class LeaseLostError(OutboxError):
    """A publisher tried to record an outcome for a record it no longer leases.

    Another instance claimed the record after the lease expired; the outcome
    belongs to that instance.
    """

    def __init__(self, event_id: object, owner: str) -> None:
        self.event_id = event_id
        self.owner = owner
        super().__init__(f"Outbox event {event_id} is no longer leased by '{owner}'")


__all__ = [
    "AppException",
    "EventDeserializationError",
    "EventSerializationError",
    "HandlerFailedError",
    "HandlerTimeoutError",
    "LeaseLostError",
    "NoHandlersRegisteredError",
    "NotFoundException",
    "OutboxDispatchError",
    "OutboxError",
    "RegistryConfigurationError",
    "ServiceUnavailableException",
    "UnknownEventTypeError",
]
