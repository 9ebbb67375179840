"""Scheduling API router."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.security import Principal, get_current_principal
from app.modules.scheduling.schemas import (
    AvailabilityReplace,
    AvailabilityWindowRead,
    RateRead,
    RatesReplace,
    SlotsRead,
)
from app.modules.scheduling.service import SchedulingService, get_scheduling_service

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.put("/availability", response_model=list[AvailabilityWindowRead])
async def replace_availability(
    payload: AvailabilityReplace,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> list[AvailabilityWindowRead]:
    """Replace own weekly availability windows."""
    windows = await service.replace_availability(principal, payload.windows)
    return [AvailabilityWindowRead.model_validate(item) for item in windows]


@router.get("/payees/{payee_id}/availability", response_model=list[AvailabilityWindowRead])
async def list_availability(
    payee_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    _: Principal = Depends(get_current_principal),
) -> list[AvailabilityWindowRead]:
    """Weekly availability of a payee."""
    windows = await service.list_availability(payee_id)
    return [AvailabilityWindowRead.model_validate(item) for item in windows]


@router.put("/rates", response_model=list[RateRead])
async def replace_rates(
    payload: RatesReplace,
    service: SchedulingService = Depends(get_scheduling_service),
    principal: Principal = Depends(get_current_principal),
) -> list[RateRead]:
    """Replace own rate card."""
    rates = await service.replace_rates(principal, payload.rates)
    return [RateRead.model_validate(item) for item in rates]


@router.get("/payees/{payee_id}/rates", response_model=list[RateRead])
async def list_rates(
    payee_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    _: Principal = Depends(get_current_principal),
) -> list[RateRead]:
    """Rate card of a payee."""
    rates = await service.list_rates(payee_id)
    return [RateRead.model_validate(item) for item in rates]


@router.get("/payees/{payee_id}/slots", response_model=SlotsRead)
async def list_slots(
    payee_id: UUID,
    day: date = Query(...),
    duration_minutes: int = Query(..., gt=0),
    service: SchedulingService = Depends(get_scheduling_service),
    _: Principal = Depends(get_current_principal),
) -> SlotsRead:
    """Legal session starts of a payee on one UTC day."""
    starts = await service.list_legal_slots(payee_id, day, duration_minutes)
    return SlotsRead(payee_id=payee_id, day=day, duration_minutes=duration_minutes, starts=starts)
