from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.core.config import Settings
from app.core.enums import BookingStatusEnum, SessionPhaseEnum
from app.modules.sessions.state import SessionTiming, WarningTracker, phase_for_status
from app.shared.exceptions import SessionTimingException
from app.shared.utils import intervals_overlap, is_aligned, seconds_until

START = datetime(2026, 3, 3, 10, 0, tzinfo=UTC)


def make_timing() -> SessionTiming:
    return SessionTiming.for_booking(START, 30, Settings(_env_file=None))


def test_timing_deadlines_are_anchored_to_scheduled_start() -> None:
    timing = make_timing()

    assert timing.join_opens_at == START - timedelta(minutes=5)
    assert timing.grace_deadline == START + timedelta(seconds=300)
    assert timing.end_deadline == START + timedelta(minutes=30)


def test_join_window_is_half_open() -> None:
    timing = make_timing()

    with pytest.raises(SessionTimingException):
        timing.check_join(START - timedelta(minutes=5, seconds=1))
    timing.check_join(START - timedelta(minutes=5))
    timing.check_join(START + timedelta(minutes=29, seconds=59))
    with pytest.raises(SessionTimingException):
        timing.check_join(START + timedelta(minutes=30))


def test_grace_expires_exactly_at_deadline() -> None:
    timing = make_timing()

    assert not timing.grace_expired(START + timedelta(seconds=299))
    assert timing.grace_expired(START + timedelta(seconds=300))


def test_warnings_fire_once_each() -> None:
    tracker = WarningTracker(thresholds=(300, 120))

    assert tracker.due(301) is None
    assert tracker.due(300) == 300
    assert tracker.due(250) is None
    assert tracker.due(120) == 120
    assert tracker.due(10) is None


def test_late_tick_announces_only_the_lowest_crossed_warning() -> None:
    tracker = WarningTracker(thresholds=(300, 120))

    assert tracker.due(90) == 120
    assert tracker.due(60) is None
    assert tracker.fired == {300, 120}


def test_seconds_until_rounds_up_and_never_goes_negative() -> None:
    assert seconds_until(START, START - timedelta(milliseconds=1)) == 1
    assert seconds_until(START, START) == 0
    assert seconds_until(START, START + timedelta(minutes=1)) == 0


def test_intervals_are_half_open() -> None:
    end = START + timedelta(minutes=30)

    assert intervals_overlap(START, end, START + timedelta(minutes=29), end + timedelta(minutes=30))
    assert not intervals_overlap(START, end, end, end + timedelta(minutes=30))
    assert not intervals_overlap(START, end, START - timedelta(minutes=30), START)


def test_alignment_ignores_date_and_rejects_seconds() -> None:
    assert is_aligned(START + timedelta(minutes=30), 30)
    assert not is_aligned(START + timedelta(minutes=15), 30)
    assert is_aligned(START + timedelta(minutes=15), 15)
    assert not is_aligned(START + timedelta(seconds=1), 15)


@pytest.mark.parametrize(
    ("status", "both_joined_at", "phase"),
    [
        (BookingStatusEnum.SCHEDULED, None, SessionPhaseEnum.WAITING),
        (BookingStatusEnum.SCHEDULED, START, SessionPhaseEnum.ACTIVE),
        (BookingStatusEnum.IN_PROGRESS, START, SessionPhaseEnum.ACTIVE),
        (BookingStatusEnum.COMPLETED, START, SessionPhaseEnum.COMPLETED),
        (BookingStatusEnum.CANCELLED_NO_SHOW, None, SessionPhaseEnum.CANCELLED_NO_SHOW),
        (BookingStatusEnum.CANCELLED, None, SessionPhaseEnum.CANCELLED),
        (BookingStatusEnum.DECLINED, None, SessionPhaseEnum.CANCELLED),
    ],
)
def test_phase_follows_authoritative_record(
    status: BookingStatusEnum,
    both_joined_at: datetime | None,
    phase: SessionPhaseEnum,
) -> None:
    assert phase_for_status(status, both_joined_at) == phase
