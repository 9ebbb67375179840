"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Enum as SAEnum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin
from app.core.enums import TERMINAL_BOOKING_STATUSES, BookingStatusEnum


class Booking(BaseModelMixin, Base):
    """Paid video session between a payer and a payee.

    Overlapping non-terminal bookings of one payee are rejected by a
    database exclusion constraint over ``[scheduled_start, scheduled_end)``.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("credits_reserved = payee_payout + platform_fee", name="split_balanced"),
        CheckConstraint("payee_payout >= 0 AND platform_fee >= 0", name="split_non_negative"),
        CheckConstraint("duration_minutes > 0", name="duration_positive"),
        CheckConstraint("scheduled_end > scheduled_start", name="end_after_start"),
        Index("ix_bookings_payee_id_scheduled_start", "payee_id", "scheduled_start"),
    )

    payer_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    payee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    credits_reserved: Mapped[int] = mapped_column(Integer, nullable=False)
    payee_payout: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[BookingStatusEnum] = mapped_column(
        SAEnum(BookingStatusEnum, name="booking_status_enum", native_enum=False),
        default=BookingStatusEnum.DRAFT,
        nullable=False,
        index=True,
    )

    room_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    room_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    payer_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    payee_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    payer_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payee_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    both_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES
