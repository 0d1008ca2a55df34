"""
Timestamp utilities for TTL bookkeeping.
"""

import time
from datetime import datetime
from typing import Callable, Optional

Clock = Callable[[], float]


def now_seconds(clock: Optional[Clock] = None) -> float:
    """Current time in seconds from the given clock (wall clock if None)."""
    return (clock or time.time)()


def is_expired(updated_at: float, ttl_seconds: float, now: float) -> bool:
    """True when more than ``ttl_seconds`` have elapsed since ``updated_at``."""
    return (now - updated_at) > ttl_seconds


def to_datetime(timestamp: Optional[float] = None) -> datetime:
    """Convert timestamp to datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp)
