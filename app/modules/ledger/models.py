"""Credit ledger ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Enum as SAEnum, Integer
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin
from app.core.enums import LedgerEntryTypeEnum, ReservationStatusEnum


class CreditAccount(BaseModelMixin, Base):
    """Spendable credit balance of one account.

    ``held`` is the sum of the account's reservations in HELD state, so the
    available balance is ``balance - held``.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("held >= 0", name="held_non_negative"),
        CheckConstraint("held <= balance", name="held_within_balance"),
    )

    account_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), unique=True, nullable=False, index=True)
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    held: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class CreditReservation(BaseModelMixin, Base):
    """Hold against a payer balance tied to one booking."""

    __tablename__ = "credit_reservations"
    __table_args__ = (CheckConstraint("amount > 0", name="amount_positive"),)

    booking_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), unique=True, nullable=False)
    account_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReservationStatusEnum] = mapped_column(
        SAEnum(ReservationStatusEnum, name="reservation_status_enum", native_enum=False),
        default=ReservationStatusEnum.HELD,
        nullable=False,
        index=True,
    )
    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LedgerEntry(BaseModelMixin, Base):
    """Append-only record of every balance movement."""

    __tablename__ = "ledger_entries"

    account_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    booking_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    entry_type: Mapped[LedgerEntryTypeEnum] = mapped_column(
        SAEnum(LedgerEntryTypeEnum, name="ledger_entry_type_enum", native_enum=False),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
