"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """Token roles."""

    MEMBER = "member"
    ADMIN = "admin"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CANCELLED_NO_SHOW = "cancelled_no_show"
    DECLINED = "declined"


TERMINAL_BOOKING_STATUSES = frozenset(
    {
        BookingStatusEnum.COMPLETED,
        BookingStatusEnum.CANCELLED,
        BookingStatusEnum.CANCELLED_NO_SHOW,
        BookingStatusEnum.DECLINED,
    },
)


class ReservationStatusEnum(StrEnum):
    """Credit reservation status."""

    HELD = "held"
    RELEASED = "released"
    CAPTURED = "captured"


class LedgerEntryTypeEnum(StrEnum):
    """Ledger posting kinds."""

    TOP_UP = "top_up"
    RESERVE = "reserve"
    RELEASE = "release"
    CAPTURE = "capture"
    PAYOUT = "payout"


class SettlementOutcomeEnum(StrEnum):
    """Result of a settlement attempt."""

    CAPTURED = "captured"
    RELEASED = "released"
    ALREADY_APPLIED = "already_applied"
    NOTHING_TO_SETTLE = "nothing_to_settle"


class SessionPhaseEnum(StrEnum):
    """Client-side call phase."""

    CONNECTING = "connecting"
    WAITING = "waiting"
    ACTIVE = "active"
    ENDING = "ending"
    COMPLETED = "completed"
    CANCELLED_NO_SHOW = "cancelled_no_show"
    CANCELLED = "cancelled"


class OutboxStatusEnum(StrEnum):
    """Outbox event status for integration publishing."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
