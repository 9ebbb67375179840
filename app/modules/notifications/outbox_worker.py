"""Outbox consumer that turns booking events into notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from app.core.metrics import NOTIFICATIONS_DISPATCHED_TOTAL, OUTBOX_DELIVERY_FAILURES_TOTAL
from app.modules.audit.models import OutboxEvent
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.client import NotificationClient
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)

CANCELLATION_EVENTS = ("booking.cancelled", "booking.declined", "booking.no_show")


@dataclass(slots=True)
class NotificationMessage:
    account_id: UUID
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationsOutboxWorker:
    """Deliver notifications for booking events staged in the outbox.

    Each claimed event is delivered in full or marked failed; failed events
    are requeued after exponential backoff until ``max_retries`` is reached,
    after which they stay failed as dead letters.
    """

    def __init__(
        self,
        audit_repository: AuditRepository,
        client: NotificationClient,
        *,
        batch_size: int = 100,
        max_retries: int = 5,
        base_backoff_seconds: int = 30,
        max_backoff_seconds: int = 300,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self.audit_repository = audit_repository
        self.client = client
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one processing cycle."""
        stats = {"requeued": 0, "processed": 0, "failed": 0, "dispatched": 0}
        stats["requeued"] = await self._requeue_due_failures()

        for event in await self.audit_repository.claim_pending_outbox(limit=self.batch_size):
            try:
                messages = self.build_messages(event)
                for message in messages:
                    await self.client.send(message.account_id, message.event_type, message.payload)
                    NOTIFICATIONS_DISPATCHED_TOTAL.labels(event_type=message.event_type).inc()
            except Exception as exc:
                OUTBOX_DELIVERY_FAILURES_TOTAL.labels(event_type=event.event_type).inc()
                logger.warning("Outbox event %s (%s) failed: %s", event.id, event.event_type, exc)
                await self.audit_repository.mark_outbox_failed(event, str(exc))
                stats["failed"] += 1
                continue

            await self.audit_repository.mark_outbox_delivered(event, self.now_provider())
            stats["processed"] += 1
            stats["dispatched"] += len(messages)
        return stats

    async def _requeue_due_failures(self) -> int:
        now = self.now_provider()
        candidates = await self.audit_repository.claim_retryable_outbox(
            limit=self.batch_size,
            max_retries=self.max_retries,
        )
        requeued = 0
        for event in candidates:
            if now >= self.next_attempt_at(event):
                await self.audit_repository.requeue_outbox(event)
                requeued += 1
        return requeued

    def next_attempt_at(self, event: OutboxEvent) -> datetime:
        retries = max(event.retries, 1)
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.base_backoff_seconds * (2 ** (retries - 1)),
        )
        last_attempt_at = event.updated_at or event.occurred_at
        return last_attempt_at + timedelta(seconds=backoff_seconds)

    def build_messages(self, event: OutboxEvent) -> list[NotificationMessage]:
        """Map a booking event to the notifications it owes; unknown events owe none."""
        payload = event.payload or {}
        event_type = event.event_type
        booking_id = payload.get("booking_id", "unknown")
        scheduled_start = payload.get("scheduled_start")

        if event_type == "booking.scheduled":
            payer_id = self._required_uuid(payload, "payer_id")
            return [
                NotificationMessage(
                    account_id=payer_id,
                    event_type="booking_confirmed",
                    payload={"booking_id": booking_id, "scheduled_start": scheduled_start},
                ),
            ]

        if event_type in CANCELLATION_EVENTS:
            reason = payload.get("reason") or event_type.removeprefix("booking.")
            recipients = self._unique_recipients(
                self._optional_uuid(payload, "payer_id"),
                self._optional_uuid(payload, "payee_id"),
            )
            return [
                NotificationMessage(
                    account_id=account_id,
                    event_type="booking_cancelled",
                    payload={
                        "booking_id": booking_id,
                        "scheduled_start": scheduled_start,
                        "reason": reason,
                        "credits_refunded": payload.get("credits_reserved", 0),
                    },
                )
                for account_id in recipients
            ]

        if event_type == "booking.completed":
            payee_id = self._required_uuid(payload, "payee_id")
            return [
                NotificationMessage(
                    account_id=payee_id,
                    event_type="session_earnings",
                    payload={"booking_id": booking_id, "credits_earned": payload.get("payee_payout", 0)},
                ),
            ]

        return []

    @staticmethod
    def _required_uuid(payload: dict, key: str) -> UUID:
        value = payload.get(key)
        if value is None:
            raise ValueError(f"Missing required key: {key}")
        return UUID(str(value))

    @staticmethod
    def _optional_uuid(payload: dict, key: str) -> UUID | None:
        value = payload.get(key)
        if value is None:
            return None
        return UUID(str(value))

    @staticmethod
    def _unique_recipients(*recipients: UUID | None) -> list[UUID]:
        unique: list[UUID] = []
        seen: set[UUID] = set()
        for recipient in recipients:
            if recipient is not None and recipient not in seen:
                unique.append(recipient)
                seen.add(recipient)
        return unique
