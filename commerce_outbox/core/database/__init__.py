"""Database base classes, mixins and UUID helpers."""

from commerce_outbox.core.database.base import (
    NAMING_CONVENTION,
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
)
from commerce_outbox.core.database.utils import generate_uuid7, parse_uuid

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
    "parse_uuid",
]
