"""Audit business logic layer."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.core.security import Principal
from app.modules.audit.models import AuditLog, OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.shared.exceptions import UnauthorizedException


class AuditService:
    """Admin read access to the audit trail and booking event history."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    async def list_logs(
        self,
        actor: Principal,
        limit: int,
        offset: int,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        actor_id: UUID | None = None,
    ) -> tuple[list[AuditLog], int]:
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can view audit logs")
        return await self.repository.list_audit_logs(
            limit=limit,
            offset=offset,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
        )

    async def list_booking_events(self, actor: Principal, booking_id: UUID) -> list[OutboxEvent]:
        """Events staged for a booking, oldest first."""
        if not actor.is_admin:
            raise UnauthorizedException("Only admin can view booking events")
        return await self.repository.list_booking_events(booking_id)


async def get_audit_service(session: AsyncSession = Depends(get_db_session)) -> AuditService:
    """Dependency provider for audit service."""
    return AuditService(AuditRepository(session))
