"""Executable worker draining booking events into notifications."""

from __future__ import annotations

import asyncio

from app.core.config import get_settings
from app.core.database import session_scope
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.client import close_notification_client, get_notification_client
from app.modules.notifications.outbox_worker import NotificationsOutboxWorker
from app.workers.runner import run_worker


async def run_cycle() -> dict[str, int]:
    """Deliver one batch; claimed rows stay locked until the batch commits."""
    settings = get_settings()
    async with session_scope() as session:
        worker = NotificationsOutboxWorker(
            audit_repository=AuditRepository(session),
            client=get_notification_client(),
            batch_size=settings.outbox_worker_batch_size,
            max_retries=settings.outbox_worker_max_retries,
            base_backoff_seconds=settings.outbox_worker_base_backoff_seconds,
            max_backoff_seconds=settings.outbox_worker_max_backoff_seconds,
        )
        return await worker.run_once()


async def main() -> None:
    await run_worker(
        "outbox_notifications",
        run_cycle,
        poll_seconds=get_settings().outbox_worker_poll_seconds,
        shutdown=close_notification_client,
    )


if __name__ == "__main__":
    asyncio.run(main())
