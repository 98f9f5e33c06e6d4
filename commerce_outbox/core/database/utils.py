"""Database utility functions.

Provides UUID v7 generation (time-sortable) and UUID parsing.

UUID v7 encodes a Unix timestamp in milliseconds in the first 48 bits, so ids
created later sort after earlier ones (at millisecond granularity).
"""

from __future__ import annotations

import os
import time
import uuid


def generate_uuid7() -> uuid.UUID:
    """Generate a UUID v7 (time-sortable).

    Layout (RFC 9562):
    - Bits 0-47: Unix timestamp in milliseconds (big-endian)
    - Bits 48-51: Version (7)
    - Bits 64-65: Variant (10)
    - Remaining bits: random
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80
    uuid_bytes[9:16] = random_bytes[3:10]

    return uuid.UUID(bytes=bytes(uuid_bytes))


def parse_uuid(value: str | uuid.UUID) -> uuid.UUID:
    """Parse a UUID from its canonical or hyphen-less form.

    Raises:
        ValueError: If the value is not a valid UUID.
    """
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(value.strip())


__all__ = ["generate_uuid7", "parse_uuid"]
