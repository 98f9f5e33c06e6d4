"""Unit tests for structured logging."""
from __future__ import annotations

import json
import logging

import pytest

from commerce_outbox.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    configure_logging,
    get_log_context,
    log_context,
    remove_from_log_context,
    set_log_context,
)
from commerce_outbox.infra.logging.config import shutdown


def make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="commerce_outbox.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


class TestLogContext:
    def test_set_and_remove(self):
        set_log_context(outbox_id="abc", event_type="order.placed")
        remove_from_log_context("event_type")

        assert get_log_context() == {"outbox_id": "abc"}

    def test_scoped_context_is_restored(self):
        set_log_context(service="outbox")

        with log_context(outbox_id="abc"):
            assert get_log_context() == {"service": "outbox", "outbox_id": "abc"}

        assert get_log_context() == {"service": "outbox"}

    def test_scoped_context_restored_on_error(self):
        with pytest.raises(ValueError), log_context(outbox_id="abc"):
            raise ValueError("boom")

        assert get_log_context() == {}

    def test_filter_injects_without_overwriting(self):
        record = make_record(event_type="from-extra")

        with log_context(outbox_id="abc", event_type="from-context"):
            assert ContextInjectingFilter().filter(record) is True

        assert record.outbox_id == "abc"
        assert record.event_type == "from-extra"


class TestJSONFormatter:
    def test_basic_fields(self):
        formatter = JSONFormatter(static={"service": "commerce-outbox"})

        data = json.loads(formatter.format(make_record("Outbox batch processed", delivered=3)))

        assert data["level"] == "INFO"
        assert data["logger"] == "commerce_outbox.test"
        assert data["message"] == "Outbox batch processed"
        assert data["service"] == "commerce-outbox"
        assert data["delivered"] == 3
        assert data["timestamp"].endswith("Z")
        assert "trace_id" not in data

    def test_exception_is_single_line(self):
        formatter = JSONFormatter()
        try:
            raise RuntimeError("handler down")
        except RuntimeError:
            import sys

            record = make_record("failed")
            record.exc_info = sys.exc_info()

        output = formatter.format(record)

        assert "\n" not in output
        assert "RuntimeError: handler down" in json.loads(output)["exception"]

    def test_non_json_values_are_stringified(self):
        from uuid import UUID

        record_id = UUID("01890000-0000-7000-8000-000000000000")
        data = json.loads(JSONFormatter().format(make_record(outbox_id=record_id)))

        assert data["outbox_id"] == str(record_id)


class TestConfigureLogging:
    def test_json_file_output_with_context(self, tmp_path):
        log_file = tmp_path / "logs" / "outbox.jsonl"
        root = logging.getLogger()
        previous_level = root.level
        try:
            configure_logging(
                "INFO",
                file_path=log_file,
                json_logs=True,
                console_enabled=False,
                capture_warnings=False,
            )
            with log_context(outbox_id="abc", event_type="order.placed"):
                logging.getLogger("commerce_outbox.test").info(
                    "Event delivered", extra={"handlers": 2}
                )
        finally:
            shutdown()
            root.setLevel(previous_level)

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        delivered = [line for line in lines if line["message"] == "Event delivered"]
        assert len(delivered) == 1
        assert delivered[0]["outbox_id"] == "abc"
        assert delivered[0]["event_type"] == "order.placed"
        assert delivered[0]["handlers"] == 2
        assert delivered[0]["service"] == "commerce-outbox"

    def test_reconfiguring_replaces_queue_handler(self, tmp_path):
        from logging.handlers import QueueHandler

        root = logging.getLogger()
        previous_level = root.level
        try:
            configure_logging(file_path=tmp_path / "a.log", console_enabled=False)
            configure_logging(file_path=tmp_path / "b.log", console_enabled=False)

            queue_handlers = [h for h in root.handlers if isinstance(h, QueueHandler)]
            assert len(queue_handlers) == 1
        finally:
            shutdown()
            root.setLevel(previous_level)

        assert not [h for h in root.handlers if isinstance(h, QueueHandler)]
