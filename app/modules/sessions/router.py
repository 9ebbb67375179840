"""Session API router."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.core.realtime import ChangeFeed, get_change_feed
from app.core.security import Principal, get_current_principal
from app.modules.booking.schemas import BookingRead
from app.modules.booking.service import BookingService, get_booking_service
from app.modules.sessions.schemas import JoinTicket, SweepResult
from app.modules.sessions.service import SessionService, get_session_service

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/sweep", response_model=SweepResult)
async def sweep_sessions(
    service: SessionService = Depends(get_session_service),
    principal: Principal = Depends(get_current_principal),
) -> SweepResult:
    """Settle abandoned sessions (admin)."""
    return await service.sweep(principal)


@router.post("/{booking_id}/join", response_model=JoinTicket)
async def join_session(
    booking_id: UUID,
    service: SessionService = Depends(get_session_service),
    principal: Principal = Depends(get_current_principal),
) -> JoinTicket:
    """Record join and return room credentials."""
    return await service.join(booking_id, principal)


@router.post("/{booking_id}/in-progress", response_model=BookingRead)
async def mark_in_progress(
    booking_id: UUID,
    service: SessionService = Depends(get_session_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Both parties are connected."""
    booking = await service.mark_in_progress(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingRead)
async def complete_session(
    booking_id: UUID,
    service: SessionService = Depends(get_session_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Finish the call and pay the payee."""
    booking = await service.complete(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/no-show", response_model=BookingRead)
async def cancel_no_show(
    booking_id: UUID,
    service: SessionService = Depends(get_session_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Cancel and refund after the grace period (payer)."""
    booking = await service.cancel_no_show(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.get("/{booking_id}/events")
async def stream_session_events(
    booking_id: UUID,
    booking_service: BookingService = Depends(get_booking_service),
    feed: ChangeFeed = Depends(get_change_feed),
    principal: Principal = Depends(get_current_principal),
) -> StreamingResponse:
    """Server-sent change hints for one booking."""
    await booking_service.get_booking(booking_id, principal)

    async def _events() -> AsyncIterator[str]:
        async with feed.subscribe(booking_id) as changes:
            async for payload in changes:
                yield f"data: {json.dumps(payload)}\n\n"

    return StreamingResponse(_events(), media_type="text/event-stream")
