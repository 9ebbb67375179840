"""Scheduling business logic layer."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.security import Principal
from app.modules.booking.repository import BookingRepository
from app.modules.scheduling.models import AvailabilityWindow, PayeeRate
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.resolver import SlotRules, check_slot, compute_legal_slots
from app.modules.scheduling.schemas import AvailabilityWindowWrite, RateWrite
from app.shared.exceptions import ValidationException
from app.shared.utils import ensure_utc, utc_now


class SchedulingService:
    """Availability, rates and conflict checks of payees."""

    def __init__(
        self,
        repository: SchedulingRepository,
        booking_repository: BookingRepository,
        rules: SlotRules | None = None,
    ) -> None:
        self.repository = repository
        self.booking_repository = booking_repository
        self.rules = rules or SlotRules.from_settings(get_settings())

    async def replace_availability(
        self,
        actor: Principal,
        windows: list[AvailabilityWindowWrite],
    ) -> list[AvailabilityWindow]:
        """Replace the caller's weekly windows."""
        return await self.repository.replace_windows(
            actor.id,
            [window.model_dump() for window in windows],
        )

    async def list_availability(self, payee_id: UUID) -> list[AvailabilityWindow]:
        return await self.repository.list_windows(payee_id)

    async def replace_rates(self, actor: Principal, rates: list[RateWrite]) -> list[PayeeRate]:
        """Replace the caller's rate card; only bookable durations may be priced."""
        for rate in rates:
            if rate.duration_minutes not in self.rules.allowed_durations:
                raise ValidationException(f"Unsupported duration: {rate.duration_minutes} minutes")
        return await self.repository.replace_rates(actor.id, [rate.model_dump() for rate in rates])

    async def list_rates(self, payee_id: UUID) -> list[PayeeRate]:
        return await self.repository.list_rates(payee_id)

    async def get_rate(self, payee_id: UUID, duration_minutes: int) -> PayeeRate:
        """Return the payee's price for a duration."""
        rate = await self.repository.get_rate(payee_id, duration_minutes)
        if rate is None:
            raise ValidationException("Payee does not offer this duration")
        return rate

    async def list_legal_slots(
        self,
        payee_id: UUID,
        day: date,
        duration_minutes: int,
    ) -> list[datetime]:
        """Bookable starts of a payee on one UTC day."""
        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        windows = await self.repository.list_windows(payee_id)
        existing = await self.booking_repository.list_non_terminal_for_payee(
            payee_id,
            range_start=day_start,
            range_end=day_start + timedelta(days=1, minutes=duration_minutes),
        )
        return compute_legal_slots(windows, day, duration_minutes, existing, utc_now(), self.rules)

    async def check_slot(self, payee_id: UUID, start: datetime, duration_minutes: int) -> None:
        """Raise ValidationException or ConflictException for an unbookable start."""
        start = ensure_utc(start)
        windows = await self.repository.list_windows(payee_id)
        existing = await self.booking_repository.list_non_terminal_for_payee(
            payee_id,
            range_start=start,
            range_end=start + timedelta(minutes=duration_minutes),
        )
        check_slot(start, duration_minutes, windows, existing, utc_now(), self.rules)


async def get_scheduling_service(session: AsyncSession = Depends(get_db_session)) -> SchedulingService:
    """Dependency provider for scheduling service."""
    return SchedulingService(SchedulingRepository(session), BookingRepository(session))
