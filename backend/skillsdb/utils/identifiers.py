from __future__ import annotations

import os
import time
import uuid
from typing import Optional


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    Used as the primary-key default for every table, so it must be callable
    with zero arguments.

    Layout:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def correlation_id(entity_type: str, entity_id: str, action: Optional[str] = None) -> str:
    """Correlation key shared by the audit event and notifications of one action."""
    base = f"{entity_type}:{entity_id}"
    return f"{base}:{action}" if action else base
