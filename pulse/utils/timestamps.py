"""
Epoch-millisecond helpers.

Every persisted ``created_at`` is an integer count of milliseconds since the
epoch. Older producers wrote seconds, so readers normalize defensively.
"""

from datetime import datetime, timezone
from typing import Optional, Union
import math
import time

DAY_MS = 86_400_000

# Anything smaller is read as epoch seconds (1e11 s is far in the future,
# 1e11 ms is early 1973).
MILLISECONDS_THRESHOLD = 1e11


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def normalize_timestamp_ms(value: Union[int, float, str, datetime, None]) -> Optional[int]:
    """
    Normalize a timestamp of uncertain unit to epoch milliseconds.

    Args:
        value: datetime, epoch seconds or epoch milliseconds (numbers or numeric strings)

    Returns:
        Epoch milliseconds, or None when the value cannot be interpreted
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    try:
        number = float(value)
    except (TypeError, ValueError):
        return None

    if math.isnan(number) or math.isinf(number):
        return None

    if abs(number) < MILLISECONDS_THRESHOLD:
        number *= 1000
    return int(number)
