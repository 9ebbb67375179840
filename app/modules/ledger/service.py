"""Credit ledger business logic layer."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.enums import LedgerEntryTypeEnum, ReservationStatusEnum
from app.core.security import Principal
from app.modules.audit.repository import AuditRepository
from app.modules.ledger.models import CreditReservation, LedgerEntry
from app.modules.ledger.repository import LedgerRepository
from app.modules.ledger.schemas import BalanceRead
from app.shared.exceptions import (
    ConflictException,
    InsufficientCreditsException,
    NotFoundException,
    SettlementAlreadyAppliedException,
    UnauthorizedException,
    ValidationException,
)
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)


class LedgerService:
    """Reserve, release and capture credits against account balances.

    Service methods flush but never commit; the caller owns the transaction.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        audit_repository: AuditRepository,
    ) -> None:
        self.repository = repository
        self.audit_repository = audit_repository

    async def get_balance(self, account_id: UUID) -> BalanceRead:
        """Return balance snapshot; unknown accounts read as empty."""
        account = await self.repository.get_account(account_id)
        if account is None:
            return BalanceRead(account_id=account_id, balance=0, held=0, available=0)
        return BalanceRead(
            account_id=account_id,
            balance=account.balance,
            held=account.held,
            available=account.balance - account.held,
        )

    async def reserve(self, account_id: UUID, booking_id: UUID, amount: int) -> CreditReservation:
        """Hold ``amount`` credits of ``account_id`` for ``booking_id``."""
        if amount <= 0:
            raise ValidationException("Reservation amount must be positive")
        if await self.repository.get_reservation(booking_id) is not None:
            raise ConflictException("Booking already has a credit reservation")

        await self.repository.ensure_account(account_id)
        if not await self.repository.try_hold(account_id, amount):
            raise InsufficientCreditsException("Insufficient credits for this booking", required=amount)

        reservation = await self.repository.create_reservation(booking_id, account_id, amount)
        await self.repository.add_entry(
            account_id,
            LedgerEntryTypeEnum.RESERVE,
            -amount,
            booking_id=booking_id,
        )
        logger.info("Reserved %s credits of %s for booking %s", amount, account_id, booking_id)
        return reservation

    async def release(self, booking_id: UUID) -> CreditReservation:
        """Return held credits to the payer; raises if already settled."""
        reservation = await self._claim(booking_id, ReservationStatusEnum.RELEASED)
        await self.repository.unhold(reservation.account_id, reservation.amount)
        await self.repository.add_entry(
            reservation.account_id,
            LedgerEntryTypeEnum.RELEASE,
            reservation.amount,
            booking_id=booking_id,
        )
        logger.info("Released %s credits for booking %s", reservation.amount, booking_id)
        return reservation

    async def capture(self, booking_id: UUID, payee_id: UUID, payee_payout: int) -> CreditReservation:
        """Consume held credits and credit the payee's share."""
        if payee_payout < 0:
            raise ValidationException("Payout must not be negative")
        reservation = await self._claim(booking_id, ReservationStatusEnum.CAPTURED)
        if payee_payout > reservation.amount:
            raise ValidationException("Payout exceeds reserved amount")

        await self.repository.debit_held(reservation.account_id, reservation.amount)
        await self.repository.add_entry(
            reservation.account_id,
            LedgerEntryTypeEnum.CAPTURE,
            -reservation.amount,
            booking_id=booking_id,
        )
        if payee_payout:
            await self.repository.ensure_account(payee_id)
            await self.repository.add_to_balance(payee_id, payee_payout)
            await self.repository.add_entry(
                payee_id,
                LedgerEntryTypeEnum.PAYOUT,
                payee_payout,
                booking_id=booking_id,
            )
        logger.info(
            "Captured %s credits for booking %s, payout %s to %s",
            reservation.amount,
            booking_id,
            payee_payout,
            payee_id,
        )
        return reservation

    async def top_up(self, account_id: UUID, amount: int, actor: Principal) -> BalanceRead:
        """Credit an account (admin)."""
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can top up balances")
        if amount <= 0:
            raise ValidationException("Top-up amount must be positive")

        await self.repository.ensure_account(account_id)
        await self.repository.add_to_balance(account_id, amount)
        await self.repository.add_entry(account_id, LedgerEntryTypeEnum.TOP_UP, amount)
        await self.audit_repository.record_action(
            actor_id=actor.id,
            action="ledger.top_up",
            entity_type="credit_account",
            entity_id=str(account_id),
            payload={"amount": amount},
        )
        return await self.get_balance(account_id)

    async def list_entries(
        self,
        account_id: UUID,
        actor: Principal,
        limit: int,
        offset: int,
    ) -> tuple[list[LedgerEntry], int]:
        """List ledger entries of an account."""
        if not actor.is_admin and actor.id != account_id:
            raise UnauthorizedException("Access denied")
        return await self.repository.list_entries(account_id, limit=limit, offset=offset)

    async def _claim(self, booking_id: UUID, status: ReservationStatusEnum) -> CreditReservation:
        reservation = await self.repository.claim_reservation(booking_id, status, utc_now())
        if reservation is not None:
            return reservation
        if await self.repository.get_reservation(booking_id) is None:
            raise NotFoundException("Credit reservation not found")
        raise SettlementAlreadyAppliedException("Reservation already settled")


async def get_ledger_service(session: AsyncSession = Depends(get_db_session)) -> LedgerService:
    """Dependency provider for ledger service."""
    return LedgerService(
        repository=LedgerRepository(session),
        audit_repository=AuditRepository(session),
    )
