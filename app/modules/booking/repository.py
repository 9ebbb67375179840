"""Booking repository layer."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, Select, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import TERMINAL_BOOKING_STATUSES, BookingStatusEnum
from app.modules.booking.models import Booking

OPEN_BOOKING_STATUSES = (BookingStatusEnum.PENDING, BookingStatusEnum.SCHEDULED)


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_draft(
        self,
        payer_id: UUID,
        payee_id: UUID,
        scheduled_start: datetime,
        duration_minutes: int,
        credits_reserved: int,
        payee_payout: int,
        platform_fee: int,
    ) -> Booking:
        booking = Booking(
            payer_id=payer_id,
            payee_id=payee_id,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_start + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            credits_reserved=credits_reserved,
            payee_payout=payee_payout,
            platform_fee=platform_fee,
            status=BookingStatusEnum.DRAFT,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

    async def list_bookings(
        self,
        participant_id: UUID | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking).where(
            Booking.status != BookingStatusEnum.DRAFT,
        )
        if participant_id is not None:
            base_stmt = base_stmt.where(
                or_(Booking.payer_id == participant_id, Booking.payee_id == participant_id),
            )

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Booking.scheduled_start.desc()).limit(limit).offset(offset)
        items = (await self.session.scalars(stmt)).all()
        return items, total

    async def list_non_terminal_for_payee(
        self,
        payee_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[Booking]:
        """Bookings of a payee that still occupy part of a range, drafts included."""
        stmt = (
            select(Booking)
            .where(
                Booking.payee_id == payee_id,
                Booking.status.not_in(TERMINAL_BOOKING_STATUSES),
                Booking.scheduled_start < range_end,
                Booking.scheduled_end > range_start,
            )
            .order_by(Booking.scheduled_start.asc())
        )
        return (await self.session.scalars(stmt)).all()

    async def transition(
        self,
        booking_id: UUID,
        expected: BookingStatusEnum | Collection[BookingStatusEnum],
        new: BookingStatusEnum,
        *,
        conditions: Sequence[ColumnElement[bool]] = (),
        **values: Any,
    ) -> Booking | None:
        """Move booking to ``new`` only if it is still in ``expected``.

        Returns None when another writer got there first.
        """
        if isinstance(expected, BookingStatusEnum):
            expected = (expected,)
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(tuple(expected)), *conditions)
            .values(status=new, **values)
            .returning(Booking)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return await self.session.scalar(stmt)

    async def update_fields(self, booking_id: UUID, **values: Any) -> Booking | None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**values)
            .returning(Booking)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return await self.session.scalar(stmt)

    async def record_join(self, booking_id: UUID, column: str, joined_at: datetime) -> Booking | None:
        """Set a join timestamp the first time only."""
        target = getattr(Booking, column)
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.not_in(TERMINAL_BOOKING_STATUSES))
            .values({column: func.coalesce(target, joined_at)})
            .returning(Booking)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return await self.session.scalar(stmt)

    async def mark_settled(self, booking_id: UUID, settled_at: datetime) -> Booking | None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.settled_at.is_(None))
            .values(settled_at=settled_at)
            .returning(Booking)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        return await self.session.scalar(stmt)

    async def find_no_show_candidates(self, started_before: datetime, limit: int = 100) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.status.in_(OPEN_BOOKING_STATUSES),
                Booking.both_joined_at.is_(None),
                Booking.scheduled_start <= started_before,
            )
            .order_by(Booking.scheduled_start.asc())
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()

    async def find_overrun_candidates(self, now: datetime, limit: int = 100) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.status == BookingStatusEnum.IN_PROGRESS,
                Booking.scheduled_end <= now,
            )
            .order_by(Booking.scheduled_end.asc())
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()

    async def delete_booking(
        self,
        booking_id: UUID,
        statuses: Collection[BookingStatusEnum] = (BookingStatusEnum.DRAFT, BookingStatusEnum.PENDING),
    ) -> None:
        """Delete a booking that never became visible as scheduled."""
        stmt = delete(Booking).where(Booking.id == booking_id, Booking.status.in_(tuple(statuses)))
        await self.session.execute(stmt)
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
