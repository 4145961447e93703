"""Database utility functions."""

from __future__ import annotations

import os
import time
import uuid


def generate_uuid7() -> uuid.UUID:
    """Generate a UUID v7 (time-sortable).

    UUID v7 encodes Unix timestamp in milliseconds in the first 48 bits,
    providing natural time-ordering while maintaining uniqueness.

    Returns:
        UUID v7 instance

    Example:
        >>> id1 = generate_uuid7()
        >>> id2 = generate_uuid7()
        >>> str(id1) < str(id2)  # Later IDs sort after earlier ones
        True
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    # Construct UUID bytes according to RFC 9562:
    # - Bits 0-47: Unix timestamp in milliseconds (big-endian)
    # - Bits 48-51: Version (7)
    # - Bits 64-65: Variant (10)
    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80
    uuid_bytes[9:16] = random_bytes[3:10]

    return uuid.UUID(bytes=bytes(uuid_bytes))


def uuid7_str() -> str:
    """Generate a UUID v7 in canonical string form."""
    return str(generate_uuid7())


__all__ = ["generate_uuid7", "uuid7_str"]
