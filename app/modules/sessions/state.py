"""Pure timing and phase rules of a live session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.core.config import Settings
from app.core.enums import BookingStatusEnum, SessionPhaseEnum
from app.shared.exceptions import SessionTimingException
from app.shared.utils import ensure_utc

TERMINAL_PHASES = frozenset(
    {
        SessionPhaseEnum.COMPLETED,
        SessionPhaseEnum.CANCELLED_NO_SHOW,
        SessionPhaseEnum.CANCELLED,
    },
)


@dataclass(frozen=True, slots=True)
class SessionTiming:
    """Deadlines of one booking, all anchored to the scheduled start."""

    scheduled_start: datetime
    duration: timedelta
    early_join: timedelta = timedelta(minutes=5)
    grace_period: timedelta = timedelta(minutes=5)

    @classmethod
    def for_booking(
        cls,
        scheduled_start: datetime,
        duration_minutes: int,
        settings: Settings,
    ) -> "SessionTiming":
        return cls(
            scheduled_start=ensure_utc(scheduled_start),
            duration=timedelta(minutes=duration_minutes),
            early_join=timedelta(minutes=settings.session_early_join_minutes),
            grace_period=timedelta(seconds=settings.session_grace_period_seconds),
        )

    @property
    def join_opens_at(self) -> datetime:
        return self.scheduled_start - self.early_join

    @property
    def grace_deadline(self) -> datetime:
        return self.scheduled_start + self.grace_period

    @property
    def end_deadline(self) -> datetime:
        return self.scheduled_start + self.duration

    def check_join(self, now: datetime) -> None:
        """Raise SessionTimingException outside ``[join_opens_at, end_deadline)``."""
        now = ensure_utc(now)
        if now < self.join_opens_at:
            raise SessionTimingException("Session is not open for joining yet", opens_at=self.join_opens_at)
        if now >= self.end_deadline:
            raise SessionTimingException("Session has already ended", ended_at=self.end_deadline)

    def grace_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.grace_deadline


@dataclass(slots=True)
class WarningTracker:
    """Remaining-time warnings, each fired at most once."""

    thresholds: tuple[int, ...] = (300, 120)
    fired: set[int] = field(default_factory=set)

    def due(self, remaining_seconds: int) -> int | None:
        """Threshold to announce now, if any.

        After a delayed tick several thresholds may be crossed at once; only
        the lowest is announced and all of them are marked as fired.
        """
        crossed = [
            threshold
            for threshold in self.thresholds
            if remaining_seconds <= threshold and threshold not in self.fired
        ]
        if not crossed:
            return None
        self.fired.update(crossed)
        return min(crossed)


def phase_for_status(
    status: BookingStatusEnum,
    both_joined_at: datetime | None,
) -> SessionPhaseEnum:
    """Phase implied by an authoritative booking record."""
    if status == BookingStatusEnum.COMPLETED:
        return SessionPhaseEnum.COMPLETED
    if status == BookingStatusEnum.CANCELLED_NO_SHOW:
        return SessionPhaseEnum.CANCELLED_NO_SHOW
    if status in (BookingStatusEnum.CANCELLED, BookingStatusEnum.DECLINED):
        return SessionPhaseEnum.CANCELLED
    if status == BookingStatusEnum.IN_PROGRESS or both_joined_at is not None:
        return SessionPhaseEnum.ACTIVE
    return SessionPhaseEnum.WAITING
