"""Settlement of terminal bookings against the credit ledger."""

from __future__ import annotations

import logging

from app.core.enums import BookingStatusEnum, SettlementOutcomeEnum
from app.core.metrics import SETTLEMENTS_TOTAL
from app.modules.booking.models import Booking
from app.modules.booking.repository import BookingRepository
from app.modules.ledger.service import LedgerService
from app.shared.exceptions import NotFoundException, SettlementAlreadyAppliedException
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)

REFUNDED_STATUSES = frozenset(
    {
        BookingStatusEnum.CANCELLED,
        BookingStatusEnum.DECLINED,
        BookingStatusEnum.CANCELLED_NO_SHOW,
    },
)


class SettlementService:
    """Post exactly one capture or release per terminal booking.

    Runs inside the caller's transaction so the status change and the
    posting commit together.
    """

    def __init__(self, ledger_service: LedgerService, booking_repository: BookingRepository) -> None:
        self.ledger_service = ledger_service
        self.booking_repository = booking_repository

    async def settle(self, booking: Booking) -> SettlementOutcomeEnum:
        """Capture completed bookings, refund cancelled ones; safe to repeat."""
        try:
            if booking.status == BookingStatusEnum.COMPLETED:
                await self.ledger_service.capture(booking.id, booking.payee_id, booking.payee_payout)
                outcome = SettlementOutcomeEnum.CAPTURED
            elif booking.status in REFUNDED_STATUSES:
                await self.ledger_service.release(booking.id)
                outcome = SettlementOutcomeEnum.RELEASED
            else:
                logger.warning("Booking %s is %s; nothing to settle", booking.id, booking.status)
                outcome = SettlementOutcomeEnum.NOTHING_TO_SETTLE
        except SettlementAlreadyAppliedException:
            logger.info("Booking %s already settled", booking.id)
            outcome = SettlementOutcomeEnum.ALREADY_APPLIED
        except NotFoundException:
            logger.warning("Booking %s has no credit reservation", booking.id)
            outcome = SettlementOutcomeEnum.NOTHING_TO_SETTLE

        if outcome in (SettlementOutcomeEnum.CAPTURED, SettlementOutcomeEnum.RELEASED):
            await self.booking_repository.mark_settled(booking.id, utc_now())
        SETTLEMENTS_TOTAL.labels(outcome=outcome.value).inc()
        return outcome
