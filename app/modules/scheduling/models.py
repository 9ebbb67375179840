"""Scheduling ORM models."""

from __future__ import annotations

from datetime import time
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Integer, SmallInteger, Time, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin


class AvailabilityWindow(BaseModelMixin, Base):
    """Weekly recurring interval in which a payee accepts bookings (UTC)."""

    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="day_of_week_range"),
        CheckConstraint("end_time > start_time", name="end_after_start"),
    )

    payee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time(), nullable=False)
    end_time: Mapped[time] = mapped_column(Time(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PayeeRate(BaseModelMixin, Base):
    """Price in credits a payee charges for one session duration."""

    __tablename__ = "payee_rates"
    __table_args__ = (
        UniqueConstraint("payee_id", "duration_minutes", name="uq_payee_rates_payee_duration"),
        CheckConstraint("credits > 0", name="credits_positive"),
    )

    payee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
