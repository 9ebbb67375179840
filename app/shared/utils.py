"""Shared utility functions."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize datetime to UTC timezone; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_until(deadline: datetime, now: datetime) -> int:
    """Whole seconds left until deadline, rounded up and never negative."""
    remaining = (deadline - now) / timedelta(seconds=1)
    return max(0, math.ceil(remaining))


def intervals_overlap(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open ``[start, end)`` intervals; touching ends do not overlap."""
    return start < other_end and other_start < end


def is_aligned(moment: datetime, granularity_minutes: int) -> bool:
    """True when ``moment`` falls on a whole granularity boundary of its day."""
    if moment.second or moment.microsecond:
        return False
    return (moment.hour * 60 + moment.minute) % granularity_minutes == 0
