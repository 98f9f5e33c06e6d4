"""CLI utilities for running async operations and formatting output."""

from commerce_outbox.cli.utils.async_runner import coro
from commerce_outbox.cli.utils.formatters import (
    echo_json,
    error,
    header,
    info,
    key_values,
    success,
    warning,
)

__all__ = [
    "coro",
    "echo_json",
    "error",
    "header",
    "info",
    "key_values",
    "success",
    "warning",
]
