"""Notifications API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.core.security import Principal, get_current_principal
from app.modules.notifications.schemas import OutboxDeliveryMetricsRead
from app.modules.notifications.service import NotificationsService, get_notifications_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/delivery/metrics", response_model=OutboxDeliveryMetricsRead)
async def get_delivery_metrics(
    max_retries: int | None = Query(default=None, ge=1, le=100),
    service: NotificationsService = Depends(get_notifications_service),
    principal: Principal = Depends(get_current_principal),
) -> OutboxDeliveryMetricsRead:
    """Outbox delivery snapshot; dead letters are counted against the worker retry limit."""
    return await service.get_delivery_metrics(principal, max_retries=max_retries)
