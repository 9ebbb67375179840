"""Audit API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.security import Principal, get_current_principal
from app.modules.audit.schemas import AuditLogRead, BookingEventRead
from app.modules.audit.service import AuditService, get_audit_service
from app.shared.pagination import Page, PaginationParams, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    entity_type: str | None = Query(default=None, max_length=128),
    entity_id: str | None = Query(default=None, max_length=128),
    actor_id: UUID | None = Query(default=None),
    pagination: PaginationParams = Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[AuditLogRead]:
    """Audit trail, e.g. ``entity_type=credit_account`` for top-ups."""
    items, total = await service.list_logs(
        principal,
        pagination.limit,
        pagination.offset,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
    )
    return build_page(items, total, pagination, AuditLogRead)


@router.get("/bookings/{booking_id}/events", response_model=list[BookingEventRead])
async def list_booking_events(
    booking_id: UUID,
    service: AuditService = Depends(get_audit_service),
    principal: Principal = Depends(get_current_principal),
) -> list[BookingEventRead]:
    """Lifecycle events of one booking and whether their notifications went out."""
    events = await service.list_booking_events(principal, booking_id)
    return [BookingEventRead.model_validate(event) for event in events]
