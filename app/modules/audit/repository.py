"""Audit repository layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import OutboxStatusEnum
from app.modules.audit.models import AuditLog, OutboxEvent

BOOKING_AGGREGATE = "booking"


@dataclass(frozen=True, slots=True)
class OutboxCounts:
    pending: int = 0
    processed: int = 0
    failed: int = 0
    retryable_failed: int = 0
    dead_letter: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processed + self.failed


class AuditRepository:
    """DB operations for the audit trail and the booking events outbox."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record_action(
        self,
        actor_id: UUID | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict,
    ) -> AuditLog:
        log = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def list_audit_logs(
        self,
        limit: int,
        offset: int,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        actor_id: UUID | None = None,
    ) -> tuple[list[AuditLog], int]:
        stmt: Select[tuple[AuditLog]] = select(AuditLog)
        if entity_type is not None:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == actor_id)

        total = int((await self.session.scalar(select(func.count()).select_from(stmt.subquery()))) or 0)
        page = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id).limit(limit).offset(offset)
        return list((await self.session.scalars(page)).all()), total

    async def enqueue_booking_event(self, booking_id: UUID, event_type: str, payload: dict) -> OutboxEvent:
        """Stage a booking event in the caller's transaction."""
        event = OutboxEvent(
            aggregate_type=BOOKING_AGGREGATE,
            aggregate_id=str(booking_id),
            event_type=event_type,
            payload=payload,
            status=OutboxStatusEnum.PENDING,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_booking_events(self, booking_id: UUID) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.aggregate_type == BOOKING_AGGREGATE,
                OutboxEvent.aggregate_id == str(booking_id),
            )
            .order_by(OutboxEvent.occurred_at.asc())
        )
        return list((await self.session.scalars(stmt)).all())

    async def claim_pending_outbox(self, limit: int) -> list[OutboxEvent]:
        """Lock a batch of pending events; rows held by another worker are skipped."""
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatusEnum.PENDING)
            .order_by(OutboxEvent.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list((await self.session.scalars(stmt)).all())

    async def claim_retryable_outbox(self, limit: int, max_retries: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status == OutboxStatusEnum.FAILED,
                OutboxEvent.retries < max_retries,
            )
            .order_by(OutboxEvent.updated_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list((await self.session.scalars(stmt)).all())

    async def requeue_outbox(self, event: OutboxEvent) -> OutboxEvent:
        event.status = OutboxStatusEnum.PENDING
        event.error_message = None
        await self.session.flush()
        return event

    async def mark_outbox_delivered(self, event: OutboxEvent, delivered_at: datetime) -> OutboxEvent:
        event.status = OutboxStatusEnum.PROCESSED
        event.processed_at = delivered_at
        event.error_message = None
        await self.session.flush()
        return event

    async def mark_outbox_failed(self, event: OutboxEvent, error_message: str) -> OutboxEvent:
        event.status = OutboxStatusEnum.FAILED
        event.retries += 1
        # Column is TEXT but provider error bodies can be large.
        event.error_message = error_message[:2000]
        event.processed_at = None
        await self.session.flush()
        return event

    async def outbox_counts(self, max_retries: int) -> OutboxCounts:
        """Count outbox rows per delivery state in a single scan."""
        failed = OutboxEvent.status == OutboxStatusEnum.FAILED
        stmt = select(
            func.count().filter(OutboxEvent.status == OutboxStatusEnum.PENDING),
            func.count().filter(OutboxEvent.status == OutboxStatusEnum.PROCESSED),
            func.count().filter(failed),
            func.count().filter(failed, OutboxEvent.retries < max_retries),
            func.count().filter(failed, OutboxEvent.retries >= max_retries),
        )
        pending, processed, failed_count, retryable, dead = (await self.session.execute(stmt)).one()
        return OutboxCounts(
            pending=int(pending),
            processed=int(processed),
            failed=int(failed_count),
            retryable_failed=int(retryable),
            dead_letter=int(dead),
        )
