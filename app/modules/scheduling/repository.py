"""Scheduling repository layer."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.scheduling.models import AvailabilityWindow, PayeeRate


class SchedulingRepository:
    """DB access for payee availability and rates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_windows(self, payee_id: UUID) -> list[AvailabilityWindow]:
        stmt = (
            select(AvailabilityWindow)
            .where(AvailabilityWindow.payee_id == payee_id)
            .order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc())
        )
        return (await self.session.scalars(stmt)).all()

    async def replace_windows(self, payee_id: UUID, windows: list[dict]) -> list[AvailabilityWindow]:
        await self.session.execute(delete(AvailabilityWindow).where(AvailabilityWindow.payee_id == payee_id))
        created = [AvailabilityWindow(payee_id=payee_id, **window) for window in windows]
        self.session.add_all(created)
        await self.session.flush()
        return created

    async def list_rates(self, payee_id: UUID) -> list[PayeeRate]:
        stmt = (
            select(PayeeRate)
            .where(PayeeRate.payee_id == payee_id)
            .order_by(PayeeRate.duration_minutes.asc())
        )
        return (await self.session.scalars(stmt)).all()

    async def get_rate(self, payee_id: UUID, duration_minutes: int) -> PayeeRate | None:
        stmt = select(PayeeRate).where(
            PayeeRate.payee_id == payee_id,
            PayeeRate.duration_minutes == duration_minutes,
        )
        return await self.session.scalar(stmt)

    async def replace_rates(self, payee_id: UUID, rates: list[dict]) -> list[PayeeRate]:
        await self.session.execute(delete(PayeeRate).where(PayeeRate.payee_id == payee_id))
        created = [PayeeRate(payee_id=payee_id, **rate) for rate in rates]
        self.session.add_all(created)
        await self.session.flush()
        return created
