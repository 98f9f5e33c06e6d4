"""Tests for core exceptions."""

from commerce_outbox.core import exceptions as exc


def test_app_exception_defaults_title() -> None:
    error = exc.AppException(status_code=409, detail="already processed")
    assert error.title == "Conflict"
    assert error.extra == {}


def test_app_exception_unknown_status_title() -> None:
    assert exc.AppException(status_code=418, detail="teapot").title == "Error"


def test_not_found_exception_fields() -> None:
    error = exc.NotFoundException(detail="missing")
    assert error.status_code == 404
    assert error.type == "not-found"
    assert error.title == "Not Found"


def test_unknown_event_type_message() -> None:
    error = exc.UnknownEventTypeError("coupon.redeemed", version=2)
    assert str(error) == "Unknown event type: 'coupon.redeemed' version 2"
    assert error.reason == "unknown_type"


def test_handler_timeout_is_a_handler_failure() -> None:
    error = exc.HandlerTimeoutError("notify_warehouse", 0.5)
    assert isinstance(error, exc.HandlerFailedError)
    assert str(error) == "Handler 'notify_warehouse' failed: timed out after 0.5s"
    assert error.reason == "handler_timeout"


def test_dispatch_errors_share_a_base() -> None:
    for error in (
        exc.NoHandlersRegisteredError("order.placed"),
        exc.EventDeserializationError("bad payload"),
        exc.HandlerFailedError("h", "boom"),
    ):
        assert isinstance(error, exc.OutboxDispatchError)
        assert isinstance(error, exc.OutboxError)


def test_serialization_error_is_not_a_dispatch_error() -> None:
    error = exc.EventSerializationError("order.placed", "not JSON serializable")
    assert not isinstance(error, exc.OutboxDispatchError)
    assert "order.placed" in str(error)
