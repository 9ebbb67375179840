"""Ledger repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import LedgerEntryTypeEnum, ReservationStatusEnum
from app.modules.ledger.models import CreditAccount, CreditReservation, LedgerEntry


class LedgerRepository:
    """DB operations for balances and reservations.

    Every balance or reservation mutation is a single conditional UPDATE so
    concurrent callers cannot both succeed.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_account(self, account_id: UUID) -> CreditAccount | None:
        stmt = select(CreditAccount).where(CreditAccount.account_id == account_id)
        return await self.session.scalar(stmt)

    async def ensure_account(self, account_id: UUID) -> None:
        stmt = (
            insert(CreditAccount)
            .values(account_id=account_id, balance=0, held=0)
            .on_conflict_do_nothing(index_elements=[CreditAccount.account_id])
        )
        await self.session.execute(stmt)

    async def add_to_balance(self, account_id: UUID, amount: int) -> None:
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(balance=CreditAccount.balance + amount)
        )
        await self.session.execute(stmt)

    async def try_hold(self, account_id: UUID, amount: int) -> bool:
        stmt = (
            update(CreditAccount)
            .where(
                CreditAccount.account_id == account_id,
                CreditAccount.balance - CreditAccount.held >= amount,
            )
            .values(held=CreditAccount.held + amount)
            .returning(CreditAccount.id)
        )
        return (await self.session.scalar(stmt)) is not None

    async def unhold(self, account_id: UUID, amount: int) -> None:
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(held=CreditAccount.held - amount)
        )
        await self.session.execute(stmt)

    async def debit_held(self, account_id: UUID, amount: int) -> None:
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(
                balance=CreditAccount.balance - amount,
                held=CreditAccount.held - amount,
            )
        )
        await self.session.execute(stmt)

    async def create_reservation(
        self,
        booking_id: UUID,
        account_id: UUID,
        amount: int,
    ) -> CreditReservation:
        reservation = CreditReservation(
            booking_id=booking_id,
            account_id=account_id,
            amount=amount,
            status=ReservationStatusEnum.HELD,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_reservation(self, booking_id: UUID) -> CreditReservation | None:
        stmt = select(CreditReservation).where(CreditReservation.booking_id == booking_id)
        return await self.session.scalar(stmt)

    async def claim_reservation(
        self,
        booking_id: UUID,
        status: ReservationStatusEnum,
        at: datetime,
    ) -> CreditReservation | None:
        """Move a HELD reservation to ``status``; None if someone else already did."""
        values: dict = {"status": status}
        if status == ReservationStatusEnum.CAPTURED:
            values["captured_at"] = at
        else:
            values["released_at"] = at

        stmt = (
            update(CreditReservation)
            .where(
                CreditReservation.booking_id == booking_id,
                CreditReservation.status == ReservationStatusEnum.HELD,
            )
            .values(**values)
            .returning(CreditReservation)
            .execution_options(synchronize_session="fetch")
        )
        return await self.session.scalar(stmt)

    async def add_entry(
        self,
        account_id: UUID,
        entry_type: LedgerEntryTypeEnum,
        amount: int,
        booking_id: UUID | None = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            account_id=account_id,
            booking_id=booking_id,
            entry_type=entry_type,
            amount=amount,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_entries(
        self,
        account_id: UUID,
        limit: int,
        offset: int,
    ) -> tuple[list[LedgerEntry], int]:
        base_stmt: Select[tuple[LedgerEntry]] = select(LedgerEntry).where(
            LedgerEntry.account_id == account_id,
        )
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(LedgerEntry.created_at.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total
