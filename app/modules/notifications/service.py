"""Notifications business logic layer."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.security import Principal
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.schemas import OutboxDeliveryMetricsRead
from app.shared.exceptions import UnauthorizedException


class NotificationsService:
    """Observability over notification delivery."""

    def __init__(self, audit_repository: AuditRepository, default_max_retries: int = 5) -> None:
        self.audit_repository = audit_repository
        self.default_max_retries = default_max_retries

    async def get_delivery_metrics(
        self,
        actor: Principal,
        max_retries: int | None = None,
    ) -> OutboxDeliveryMetricsRead:
        """Return delivery pipeline snapshot (admin only).

        ``max_retries`` defaults to the worker's configured limit so that
        dead letters here match what the worker gave up on.
        """
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can view delivery metrics")

        limit = max_retries or self.default_max_retries
        counts = await self.audit_repository.outbox_counts(max_retries=limit)
        return OutboxDeliveryMetricsRead(
            outbox_total=counts.total,
            outbox_pending=counts.pending,
            outbox_processed=counts.processed,
            outbox_failed=counts.failed,
            outbox_retryable_failed=counts.retryable_failed,
            outbox_dead_letter=counts.dead_letter,
            max_retries=limit,
        )


async def get_notifications_service(session: AsyncSession = Depends(get_db_session)) -> NotificationsService:
    """Dependency provider for notifications service."""
    return NotificationsService(
        audit_repository=AuditRepository(session),
        default_max_retries=get_settings().outbox_worker_max_retries,
    )
