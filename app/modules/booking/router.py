"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.core.security import Principal, get_current_principal
from app.modules.booking.schemas import BookingCancelRequest, BookingCreateRequest, BookingRead
from app.modules.booking.service import BookingService, get_booking_service
from app.shared.pagination import Page, PaginationParams, build_page, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Book a session; credits are held until the session settles."""
    booking = await service.create_booking(
        principal,
        payee_id=payload.payee_id,
        scheduled_start=payload.scheduled_start,
        duration_minutes=payload.duration_minutes,
    )
    return BookingRead.model_validate(booking)


@router.get("", response_model=Page[BookingRead])
async def list_bookings(
    pagination: PaginationParams = Depends(get_pagination_params),
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[BookingRead]:
    """List own bookings."""
    items, total = await service.list_bookings(principal, pagination.limit, pagination.offset)
    return build_page(items, total, pagination, BookingRead)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Authoritative booking record."""
    booking = await service.get_booking(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancelRequest,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Cancel a booking before the session starts."""
    booking = await service.cancel_booking(booking_id, principal, payload.reason)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/accept", response_model=BookingRead)
async def accept_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Accept a requested booking (payee)."""
    booking = await service.accept_booking(booking_id, principal)
    return BookingRead.model_validate(booking)


@router.post("/{booking_id}/decline", response_model=BookingRead)
async def decline_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    principal: Principal = Depends(get_current_principal),
) -> BookingRead:
    """Decline a booking (payee)."""
    booking = await service.decline_booking(booking_id, principal)
    return BookingRead.model_validate(booking)
