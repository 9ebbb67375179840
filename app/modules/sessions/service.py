"""Server-side session transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_db_session
from app.core.enums import BookingStatusEnum
from app.core.metrics import NO_SHOW_CANCELLATIONS_TOTAL
from app.core.realtime import ChangeFeed, get_change_feed
from app.core.security import Principal
from app.modules.audit.repository import AuditRepository
from app.modules.booking.events import change_payload, outbox_payload
from app.modules.booking.models import Booking
from app.modules.booking.repository import OPEN_BOOKING_STATUSES, BookingRepository
from app.modules.ledger.repository import LedgerRepository
from app.modules.ledger.service import LedgerService
from app.modules.rooms.provider import RoomProvider, get_room_provider, teardown_room
from app.modules.sessions.schemas import JoinTicket, SweepResult
from app.modules.sessions.state import SessionTiming
from app.modules.settlement.service import SettlementService
from app.shared.exceptions import (
    ConflictException,
    NotFoundException,
    SessionTimingException,
    UnauthorizedException,
)
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)

JOINABLE_STATUSES = (BookingStatusEnum.SCHEDULED, BookingStatusEnum.IN_PROGRESS)


class SessionService:
    """Join, start, finish and no-show transitions of a booked session.

    Every transition is a conditional update on the expected status, so
    racing clients and the sweeper converge on one outcome.
    """

    def __init__(
        self,
        repository: BookingRepository,
        settlement_service: SettlementService,
        audit_repository: AuditRepository,
        room_provider: RoomProvider,
        change_feed: ChangeFeed,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.settlement_service = settlement_service
        self.audit_repository = audit_repository
        self.room_provider = room_provider
        self.change_feed = change_feed
        self.settings = settings or get_settings()

    def timing(self, booking: Booking) -> SessionTiming:
        return SessionTiming.for_booking(booking.scheduled_start, booking.duration_minutes, self.settings)

    async def _get_for_participant(self, booking_id: UUID, actor: Principal) -> Booking:
        booking = await self.repository.get_booking_by_id(booking_id)
        if booking is None or booking.status == BookingStatusEnum.DRAFT:
            raise NotFoundException("Booking not found")
        if not actor.is_admin and actor.id not in (booking.payer_id, booking.payee_id):
            raise NotFoundException("Booking not found")
        return booking

    async def join(self, booking_id: UUID, actor: Principal) -> JoinTicket:
        """Record the actor's join and hand out their room credentials."""
        booking = await self._get_for_participant(booking_id, actor)
        if booking.is_terminal:
            raise ConflictException(f"Session is {booking.status.value}")
        if booking.status == BookingStatusEnum.PENDING:
            raise ConflictException("Booking has not been accepted by the payee")
        if booking.status not in JOINABLE_STATUSES or not booking.room_url:
            raise ConflictException("Session room is not ready")
        if actor.id not in (booking.payer_id, booking.payee_id):
            raise UnauthorizedException("Only participants can join a session")

        timing = self.timing(booking)
        now = utc_now()
        timing.check_join(now)

        is_payer = actor.id == booking.payer_id
        column = "payer_joined_at" if is_payer else "payee_joined_at"
        updated = await self.repository.record_join(booking.id, column, now)
        if updated is None:
            raise ConflictException("Session is no longer joinable")
        await self.repository.commit()
        await self.change_feed.publish(updated.id, change_payload(updated))

        return JoinTicket(
            booking_id=updated.id,
            role="payer" if is_payer else "payee",
            status=updated.status,
            room_url=updated.room_url or "",
            token=(updated.payer_token if is_payer else updated.payee_token) or "",
            scheduled_start=updated.scheduled_start,
            duration_minutes=updated.duration_minutes,
            grace_deadline=timing.grace_deadline,
            end_deadline=timing.end_deadline,
        )

    async def mark_in_progress(self, booking_id: UUID, actor: Principal) -> Booking:
        """Both parties are in the room: ``scheduled -> in_progress``."""
        booking = await self._get_for_participant(booking_id, actor)
        if booking.status == BookingStatusEnum.IN_PROGRESS:
            return booking

        now = utc_now()
        self.timing(booking).check_join(now)
        started = await self.repository.transition(
            booking.id,
            BookingStatusEnum.SCHEDULED,
            BookingStatusEnum.IN_PROGRESS,
            both_joined_at=now,
            actual_start=now,
        )
        if started is None:
            return await self._already_in(booking.id, BookingStatusEnum.IN_PROGRESS)
        await self.repository.commit()
        await self.change_feed.publish(started.id, change_payload(started))
        logger.info("Session %s started", started.id)
        return started

    async def complete(self, booking_id: UUID, actor: Principal) -> Booking:
        """``in_progress -> completed`` and capture the payment."""
        booking = await self._get_for_participant(booking_id, actor)
        if booking.status == BookingStatusEnum.COMPLETED:
            return booking
        return await self._complete(booking, utc_now())

    async def _complete(self, booking: Booking, now: datetime) -> Booking:
        completed = await self.repository.transition(
            booking.id,
            BookingStatusEnum.IN_PROGRESS,
            BookingStatusEnum.COMPLETED,
            actual_end=now,
        )
        if completed is None:
            return await self._already_in(booking.id, BookingStatusEnum.COMPLETED)

        await self.settlement_service.settle(completed)
        await self.audit_repository.enqueue_booking_event(
            booking_id=completed.id,
            event_type="booking.completed",
            payload=outbox_payload(completed),
        )
        await self.repository.commit()

        await teardown_room(self.room_provider, completed.room_name)
        await self.change_feed.publish(completed.id, change_payload(completed))
        logger.info("Session %s completed", completed.id)
        return completed

    async def cancel_no_show(self, booking_id: UUID, actor: Principal) -> Booking:
        """Refund a session nobody completed joining; payer-triggered."""
        booking = await self._get_for_participant(booking_id, actor)
        if actor.id != booking.payer_id and not actor.is_admin:
            raise UnauthorizedException("Only the payer can report a no-show")
        if booking.status == BookingStatusEnum.CANCELLED_NO_SHOW:
            return booking
        return await self._cancel_no_show(booking, utc_now(), trigger="payer")

    async def _cancel_no_show(self, booking: Booking, now: datetime, *, trigger: str) -> Booking:
        timing = self.timing(booking)
        if not timing.grace_expired(now):
            raise SessionTimingException(
                "Grace period has not elapsed yet",
                grace_deadline=timing.grace_deadline,
            )

        # a payee who never accepted refunds the payer the same way
        reason = "not_accepted" if booking.status == BookingStatusEnum.PENDING else "no_show"
        cancelled = await self.repository.transition(
            booking.id,
            OPEN_BOOKING_STATUSES,
            BookingStatusEnum.CANCELLED_NO_SHOW,
            conditions=(Booking.both_joined_at.is_(None),),
            cancelled_at=now,
            cancellation_reason=reason,
        )
        if cancelled is None:
            return await self._already_in(booking.id, BookingStatusEnum.CANCELLED_NO_SHOW)

        await self.settlement_service.settle(cancelled)
        await self.audit_repository.enqueue_booking_event(
            booking_id=cancelled.id,
            event_type="booking.no_show",
            payload=outbox_payload(cancelled, reason=reason, trigger=trigger),
        )
        await self.repository.commit()

        NO_SHOW_CANCELLATIONS_TOTAL.labels(trigger=trigger).inc()
        await teardown_room(self.room_provider, cancelled.room_name)
        await self.change_feed.publish(cancelled.id, change_payload(cancelled))
        logger.info("Session %s cancelled as no-show (%s)", cancelled.id, trigger)
        return cancelled

    async def _already_in(self, booking_id: UUID, status: BookingStatusEnum) -> Booking:
        """Resolve a lost conditional update: fine if the winner reached ``status``."""
        current = await self.repository.get_booking_by_id(booking_id)
        if current is None:
            raise NotFoundException("Booking not found")
        if current.status == status:
            return current
        raise ConflictException(f"Session is {current.status.value}")

    async def sweep(self, actor: Principal | None = None, now: datetime | None = None) -> SweepResult:
        """Settle sessions whose clients never did.

        Cancels open bookings past their grace deadline that never had both
        parties, and completes in-progress bookings past their scheduled end.
        """
        if actor is not None and not actor.is_admin:
            raise UnauthorizedException("Only admin can sweep sessions")
        now = now or utc_now()
        result = SweepResult(no_shows_cancelled=0, sessions_completed=0)

        cutoff = now - timedelta(seconds=self.settings.session_grace_period_seconds)
        batch = self.settings.session_sweeper_batch_size
        no_show_ids = [booking.id for booking in await self.repository.find_no_show_candidates(cutoff, limit=batch)]
        overrun_ids = [booking.id for booking in await self.repository.find_overrun_candidates(now, limit=batch)]

        for booking_id in no_show_ids:
            booking = await self.repository.get_booking_by_id(booking_id)
            if booking is None:
                continue
            try:
                settled = await self._cancel_no_show(booking, now, trigger="sweeper")
            except (ConflictException, SessionTimingException) as exc:
                logger.info("Sweeper skipped booking %s: %s", booking.id, exc.message)
                continue
            if settled.status == BookingStatusEnum.CANCELLED_NO_SHOW:
                result.no_shows_cancelled += 1

        for booking_id in overrun_ids:
            booking = await self.repository.get_booking_by_id(booking_id)
            if booking is None:
                continue
            try:
                await self._complete(booking, now)
            except ConflictException as exc:
                logger.info("Sweeper skipped booking %s: %s", booking.id, exc.message)
                continue
            result.sessions_completed += 1

        if result.no_shows_cancelled or result.sessions_completed:
            logger.info("Session sweep: %s", result.model_dump())
        return result


async def get_session_service(session: AsyncSession = Depends(get_db_session)) -> SessionService:
    """Dependency provider for session service."""
    repository = BookingRepository(session)
    audit_repository = AuditRepository(session)
    ledger_service = LedgerService(LedgerRepository(session), audit_repository)
    return SessionService(
        repository=repository,
        settlement_service=SettlementService(ledger_service, repository),
        audit_repository=audit_repository,
        room_provider=get_room_provider(),
        change_feed=get_change_feed(),
    )
