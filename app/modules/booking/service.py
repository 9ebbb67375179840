"""Booking business logic layer."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import BookingStatusEnum
from app.core.metrics import BOOKINGS_CREATED_TOTAL, record_saga_rollback
from app.core.realtime import ChangeFeed, get_change_feed
from app.core.security import Principal
from app.modules.audit.repository import AuditRepository
from app.modules.booking.events import change_payload, outbox_payload, withdrawn_payload
from app.modules.booking.models import Booking
from app.modules.booking.pricing import split_credits
from app.modules.booking.repository import OPEN_BOOKING_STATUSES, BookingRepository
from app.modules.ledger.repository import LedgerRepository
from app.modules.ledger.service import LedgerService
from app.modules.notifications.client import NotificationClient, get_notification_client
from app.modules.rooms.provider import RoomProvider, get_room_provider, teardown_room
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.service import SchedulingService
from app.modules.settlement.service import SettlementService
from app.shared.exceptions import (
    ConflictException,
    InsufficientCreditsException,
    NotFoundException,
    SettlementAlreadyAppliedException,
    UnauthorizedException,
    ValidationException,
)
from app.shared.saga import SagaContext, SagaRunner, SagaStep
from app.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ACCEPTED_STATUSES = (
    BookingStatusEnum.SCHEDULED,
    BookingStatusEnum.IN_PROGRESS,
    BookingStatusEnum.COMPLETED,
)


class BookingService:
    """Booking domain service."""

    def __init__(
        self,
        repository: BookingRepository,
        scheduling_service: SchedulingService,
        ledger_service: LedgerService,
        settlement_service: SettlementService,
        audit_repository: AuditRepository,
        room_provider: RoomProvider,
        notification_client: NotificationClient,
        change_feed: ChangeFeed,
        *,
        payee_share_percent: int | None = None,
        room_expiry_buffer: timedelta | None = None,
    ) -> None:
        settings = get_settings()
        self.repository = repository
        self.scheduling_service = scheduling_service
        self.ledger_service = ledger_service
        self.settlement_service = settlement_service
        self.audit_repository = audit_repository
        self.room_provider = room_provider
        self.notification_client = notification_client
        self.change_feed = change_feed
        self.payee_share_percent = (
            settings.payee_share_percent if payee_share_percent is None else payee_share_percent
        )
        self.room_expiry_buffer = room_expiry_buffer or timedelta(
            minutes=settings.room_expiry_buffer_minutes,
        )

    async def create_booking(
        self,
        actor: Principal,
        payee_id: UUID,
        scheduled_start: datetime,
        duration_minutes: int,
    ) -> Booking:
        """Book a session and hold its price, all or nothing.

        Steps run in order and each completed step is compensated in reverse
        when a later one fails; the original error is re-raised.
        """
        context = SagaContext(
            values={
                "payer_id": actor.id,
                "payee_id": payee_id,
                "scheduled_start": ensure_utc(scheduled_start),
                "duration_minutes": duration_minutes,
            },
        )
        runner = SagaRunner(
            "create_booking",
            [
                SagaStep("validate_slot", self._validate_slot),
                SagaStep("check_balance", self._check_balance),
                SagaStep("insert_draft", self._insert_draft, self._delete_draft),
                SagaStep("reserve_credits", self._reserve_credits, self._release_credits),
                SagaStep("publish_booking", self._publish_booking),
                SagaStep("provision_room", self._provision_room, self._delete_room),
                SagaStep("notify_payee", self._notify_payee),
            ],
            on_rollback=record_saga_rollback,
        )
        await runner.run(context)

        booking: Booking = context["booking"]
        BOOKINGS_CREATED_TOTAL.inc()
        logger.info(
            "Booking %s requested: payer=%s payee=%s start=%s credits=%s",
            booking.id,
            booking.payer_id,
            booking.payee_id,
            booking.scheduled_start.isoformat(),
            booking.credits_reserved,
        )
        return booking

    async def _validate_slot(self, ctx: SagaContext) -> None:
        if ctx["payer_id"] == ctx["payee_id"]:
            raise ValidationException("Cannot book a session with yourself")
        await self.scheduling_service.check_slot(
            ctx["payee_id"],
            ctx["scheduled_start"],
            ctx["duration_minutes"],
        )
        rate = await self.scheduling_service.get_rate(ctx["payee_id"], ctx["duration_minutes"])
        payout, fee = split_credits(rate.credits, self.payee_share_percent)
        ctx["price"] = rate.credits
        ctx["payee_payout"] = payout
        ctx["platform_fee"] = fee

    async def _check_balance(self, ctx: SagaContext) -> None:
        balance = await self.ledger_service.get_balance(ctx["payer_id"])
        if balance.available < ctx["price"]:
            raise InsufficientCreditsException(
                f"Session costs {ctx['price']} credits, {balance.available} available",
                required=ctx["price"],
                available=balance.available,
            )

    async def _insert_draft(self, ctx: SagaContext) -> None:
        try:
            booking = await self.repository.create_draft(
                payer_id=ctx["payer_id"],
                payee_id=ctx["payee_id"],
                scheduled_start=ctx["scheduled_start"],
                duration_minutes=ctx["duration_minutes"],
                credits_reserved=ctx["price"],
                payee_payout=ctx["payee_payout"],
                platform_fee=ctx["platform_fee"],
            )
            await self.repository.commit()
        except IntegrityError as exc:
            await self.repository.rollback()
            raise ConflictException("Slot overlaps an existing booking") from exc
        ctx["booking_id"] = booking.id
        ctx["booking"] = booking

    async def _delete_draft(self, ctx: SagaContext) -> None:
        await self.repository.rollback()
        await self.repository.delete_booking(ctx["booking_id"])
        await self.repository.commit()
        if ctx.get("published"):
            await self.change_feed.publish(ctx["booking_id"], withdrawn_payload(ctx["booking_id"], utc_now()))

    async def _reserve_credits(self, ctx: SagaContext) -> None:
        await self.ledger_service.reserve(ctx["payer_id"], ctx["booking_id"], ctx["price"])
        await self.repository.commit()

    async def _release_credits(self, ctx: SagaContext) -> None:
        await self.repository.rollback()
        try:
            await self.ledger_service.release(ctx["booking_id"])
        except SettlementAlreadyAppliedException:
            logger.info("Reservation of booking %s was already settled", ctx["booking_id"])
        await self.repository.commit()

    async def _publish_booking(self, ctx: SagaContext) -> None:
        booking = await self.repository.transition(
            ctx["booking_id"],
            BookingStatusEnum.DRAFT,
            BookingStatusEnum.PENDING,
        )
        if booking is None:
            raise ConflictException("Booking changed while being created")
        await self.repository.commit()
        ctx["booking"] = booking
        ctx["published"] = True
        await self.change_feed.publish(booking.id, change_payload(booking))

    async def _provision_room(self, ctx: SagaContext) -> None:
        booking: Booking = ctx["booking"]
        expires_at = booking.scheduled_end + self.room_expiry_buffer
        room = await self.room_provider.create_room(f"session-{booking.id.hex}", expires_at)
        ctx["room_name"] = room.name
        # a failed step is not compensated, so the room is torn down here
        try:
            payer_token = await self.room_provider.create_token(room.name, str(booking.payer_id), expires_at)
            payee_token = await self.room_provider.create_token(room.name, str(booking.payee_id), expires_at)
            provisioned = await self.repository.transition(
                booking.id,
                BookingStatusEnum.PENDING,
                BookingStatusEnum.PENDING,
                room_name=room.name,
                room_url=room.url,
                payer_token=payer_token,
                payee_token=payee_token,
            )
            if provisioned is None:
                raise ConflictException("Booking was cancelled while its room was provisioned")
            await self.audit_repository.enqueue_booking_event(
                booking_id=provisioned.id,
                event_type="booking.requested",
                payload=outbox_payload(provisioned),
            )
            await self.repository.commit()
        except Exception:
            await self.repository.rollback()
            await teardown_room(self.room_provider, room.name)
            raise
        ctx["booking"] = provisioned
        await self.change_feed.publish(provisioned.id, change_payload(provisioned))

    async def _delete_room(self, ctx: SagaContext) -> None:
        await teardown_room(self.room_provider, ctx.get("room_name"))

    async def _notify_payee(self, ctx: SagaContext) -> None:
        booking: Booking = ctx["booking"]
        await self.notification_client.notify(
            booking.payee_id,
            "booking_requested",
            {
                "booking_id": str(booking.id),
                "payer_id": str(booking.payer_id),
                "scheduled_start": booking.scheduled_start.isoformat(),
                "duration_minutes": booking.duration_minutes,
                "credits_earned": booking.payee_payout,
            },
        )

    async def get_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        """Return booking visible to a participant (or admin)."""
        booking = await self.repository.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        if actor.is_admin:
            return booking
        if actor.id not in (booking.payer_id, booking.payee_id):
            raise NotFoundException("Booking not found")
        if booking.status == BookingStatusEnum.DRAFT and actor.id != booking.payer_id:
            raise NotFoundException("Booking not found")
        return booking

    async def list_bookings(self, actor: Principal, limit: int, offset: int) -> tuple[list[Booking], int]:
        """List bookings of the actor (all for admin), drafts excluded."""
        participant_id = None if actor.is_admin else actor.id
        return await self.repository.list_bookings(participant_id, limit=limit, offset=offset)

    async def cancel_booking(self, booking_id: UUID, actor: Principal, reason: str | None = None) -> Booking:
        """Cancel a booking that has not started, refunding the payer."""
        booking = await self.get_booking(booking_id, actor)
        if booking.status == BookingStatusEnum.CANCELLED:
            return booking
        return await self._close_before_start(
            booking,
            BookingStatusEnum.CANCELLED,
            reason or "user_cancelled",
            actor,
            event_type="booking.cancelled",
        )

    async def decline_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        """Payee refuses a booking, refunding the payer."""
        booking = await self.get_booking(booking_id, actor)
        if actor.id != booking.payee_id:
            raise UnauthorizedException("Only the payee can decline a booking")
        if booking.status == BookingStatusEnum.DECLINED:
            return booking
        return await self._close_before_start(
            booking,
            BookingStatusEnum.DECLINED,
            "declined",
            actor,
            event_type="booking.declined",
        )

    async def accept_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        """Payee confirms a requested booking; repeats return the current record."""
        booking = await self.get_booking(booking_id, actor)
        if actor.id != booking.payee_id:
            raise UnauthorizedException("Only the payee can accept a booking")
        if booking.status in ACCEPTED_STATUSES:
            return booking
        if booking.status != BookingStatusEnum.PENDING:
            raise ConflictException(f"Booking is {booking.status.value}")
        if not booking.room_url:
            raise ConflictException("Booking room is not ready yet")

        accepted = await self.repository.transition(
            booking.id,
            BookingStatusEnum.PENDING,
            BookingStatusEnum.SCHEDULED,
        )
        if accepted is None:
            current = await self.repository.get_booking_by_id(booking.id)
            if current is not None and current.status in ACCEPTED_STATUSES:
                return current
            raise ConflictException("Booking can no longer be accepted")

        await self.audit_repository.record_action(
            actor_id=actor.id,
            action="booking.accepted",
            entity_type="booking",
            entity_id=str(accepted.id),
            payload={},
        )
        await self.audit_repository.enqueue_booking_event(
            booking_id=accepted.id,
            event_type="booking.scheduled",
            payload=outbox_payload(accepted),
        )
        await self.repository.commit()

        await self.change_feed.publish(accepted.id, change_payload(accepted))
        logger.info("Booking %s accepted by payee %s", accepted.id, actor.id)
        return accepted

    async def _close_before_start(
        self,
        booking: Booking,
        new_status: BookingStatusEnum,
        reason: str,
        actor: Principal,
        *,
        event_type: str,
    ) -> Booking:
        now = utc_now()
        closed = await self.repository.transition(
            booking.id,
            OPEN_BOOKING_STATUSES,
            new_status,
            conditions=(Booking.both_joined_at.is_(None),),
            cancelled_at=now,
            cancellation_reason=reason,
        )
        if closed is None:
            current = await self.repository.get_booking_by_id(booking.id)
            if current is not None and current.status == new_status:
                return current
            raise ConflictException(f"Booking can no longer be {new_status.value}")

        await self.settlement_service.settle(closed)
        await self.audit_repository.record_action(
            actor_id=actor.id,
            action=event_type,
            entity_type="booking",
            entity_id=str(closed.id),
            payload={"reason": reason},
        )
        await self.audit_repository.enqueue_booking_event(
            booking_id=closed.id,
            event_type=event_type,
            payload=outbox_payload(closed, reason=reason),
        )
        await self.repository.commit()

        await teardown_room(self.room_provider, closed.room_name)
        await self.change_feed.publish(closed.id, change_payload(closed))
        logger.info("Booking %s %s by %s (%s)", closed.id, new_status.value, actor.id, reason)
        return closed


async def get_booking_service(session: AsyncSession = Depends(get_db_session)) -> BookingService:
    """Dependency provider for booking service."""
    repository = BookingRepository(session)
    audit_repository = AuditRepository(session)
    ledger_service = LedgerService(LedgerRepository(session), audit_repository)
    return BookingService(
        repository=repository,
        scheduling_service=SchedulingService(SchedulingRepository(session), repository),
        ledger_service=ledger_service,
        settlement_service=SettlementService(ledger_service, repository),
        audit_repository=audit_repository,
        room_provider=get_room_provider(),
        notification_client=get_notification_client(),
        change_feed=get_change_feed(),
    )
