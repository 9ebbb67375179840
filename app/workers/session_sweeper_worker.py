"""Executable worker settling abandoned sessions."""

from __future__ import annotations

import asyncio

from app.core.config import get_settings
from app.core.database import session_scope
from app.core.realtime import close_change_feed, get_change_feed
from app.modules.audit.repository import AuditRepository
from app.modules.booking.repository import BookingRepository
from app.modules.ledger.repository import LedgerRepository
from app.modules.ledger.service import LedgerService
from app.modules.rooms.provider import close_room_provider, get_room_provider
from app.modules.sessions.service import SessionService
from app.modules.settlement.service import SettlementService
from app.workers.runner import run_worker


async def run_cycle() -> dict[str, int]:
    """Run one sweep; each settled booking commits on its own."""
    async with session_scope() as session:
        repository = BookingRepository(session)
        audit_repository = AuditRepository(session)
        ledger_service = LedgerService(LedgerRepository(session), audit_repository)
        service = SessionService(
            repository=repository,
            settlement_service=SettlementService(ledger_service, repository),
            audit_repository=audit_repository,
            room_provider=get_room_provider(),
            change_feed=get_change_feed(),
        )
        result = await service.sweep()
        return result.model_dump()


async def _shutdown() -> None:
    await close_room_provider()
    await close_change_feed()


async def main() -> None:
    await run_worker(
        "session_sweeper",
        run_cycle,
        poll_seconds=get_settings().session_sweeper_poll_seconds,
        shutdown=_shutdown,
    )


if __name__ == "__main__":
    asyncio.run(main())
