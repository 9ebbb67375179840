"""Legal slot computation for payee calendars.

Everything here is pure: windows and existing bookings are passed in, and
``now`` is explicit, so the rules can be exercised without a database.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol

from app.core.config import Settings
from app.shared.exceptions import ConflictException, ValidationException
from app.shared.utils import ensure_utc, intervals_overlap, is_aligned


class WindowLike(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class BusyLike(Protocol):
    scheduled_start: datetime
    duration_minutes: int


@dataclass(frozen=True, slots=True)
class SlotRules:
    """Calendar constants that bound every booking."""

    allowed_durations: tuple[int, ...] = (15, 30, 60, 90)
    granularity_minutes: int = 30
    min_lead: timedelta = timedelta(minutes=15)
    max_horizon: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SlotRules":
        return cls(
            allowed_durations=tuple(settings.allowed_durations_minutes),
            granularity_minutes=settings.slot_granularity_minutes,
            min_lead=timedelta(minutes=settings.booking_min_lead_minutes),
            max_horizon=timedelta(days=settings.booking_max_horizon_days),
        )


def _validate_duration(duration_minutes: int, rules: SlotRules) -> None:
    if duration_minutes not in rules.allowed_durations:
        allowed = ", ".join(str(item) for item in rules.allowed_durations)
        raise ValidationException(f"Duration must be one of: {allowed} minutes")


def _fits_windows(start: datetime, end: datetime, windows: Sequence[WindowLike]) -> bool:
    active = [window for window in windows if window.is_active]
    if not active:
        return True
    day = start.date()
    for window in active:
        if window.day_of_week != start.weekday():
            continue
        window_start = datetime.combine(day, window.start_time, tzinfo=timezone.utc)
        window_end = datetime.combine(day, window.end_time, tzinfo=timezone.utc)
        if window_start <= start and end <= window_end:
            return True
    return False


def _overlaps(start: datetime, end: datetime, existing: Iterable[BusyLike]) -> bool:
    for item in existing:
        item_start = ensure_utc(item.scheduled_start)
        item_end = item_start + timedelta(minutes=item.duration_minutes)
        if intervals_overlap(start, end, item_start, item_end):
            return True
    return False


def check_slot(
    start: datetime,
    duration_minutes: int,
    windows: Sequence[WindowLike],
    existing: Iterable[BusyLike],
    now: datetime,
    rules: SlotRules,
) -> None:
    """Raise if ``start`` is not a bookable start for ``duration_minutes``."""
    _validate_duration(duration_minutes, rules)
    start = ensure_utc(start)
    now = ensure_utc(now)
    end = start + timedelta(minutes=duration_minutes)

    if not is_aligned(start, rules.granularity_minutes):
        raise ValidationException(
            f"Start must be aligned to {rules.granularity_minutes}-minute boundaries",
        )
    if start < now + rules.min_lead:
        raise ValidationException("Start is too soon")
    if start > now + rules.max_horizon:
        raise ValidationException("Start is too far in the future")
    if not _fits_windows(start, end, windows):
        raise ValidationException("Start is outside payee availability")
    if _overlaps(start, end, existing):
        raise ConflictException("Slot overlaps an existing booking")


def compute_legal_slots(
    windows: Sequence[WindowLike],
    day: date,
    duration_minutes: int,
    existing: Sequence[BusyLike],
    now: datetime,
    rules: SlotRules,
) -> list[datetime]:
    """All legal starts on ``day`` (UTC), ascending; empty means no availability."""
    _validate_duration(duration_minutes, rules)
    now = ensure_utc(now)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=rules.granularity_minutes)

    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    day_end = day_start + timedelta(days=1)
    earliest = now + rules.min_lead
    latest = now + rules.max_horizon

    slots: list[datetime] = []
    start = day_start
    while start < day_end:
        end = start + duration
        if (
            earliest <= start <= latest
            and _fits_windows(start, end, windows)
            and not _overlaps(start, end, existing)
        ):
            slots.append(start)
        start += step
    return slots
