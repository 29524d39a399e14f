"""Identifier generation.

IDs are a prefix, 12 hex digits of millisecond epoch time, and 16 hex
digits of uuid4 randomness. They sort by creation time (to the
millisecond) and do not collide under concurrent creation.
"""

from __future__ import annotations

import time
import uuid


def new_id(prefix: str) -> str:
    millis = int(time.time() * 1000)
    return f"{prefix}_{millis:012x}{uuid.uuid4().hex[:16]}"
