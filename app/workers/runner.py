"""Polling loop shared by the background workers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from app.core.config import get_settings
from app.core.metrics import WORKER_CYCLES_TOTAL

logger = logging.getLogger(__name__)

Cycle = Callable[[], Awaitable[Mapping[str, int]]]


async def run_worker(
    name: str,
    cycle: Cycle,
    *,
    poll_seconds: float,
    shutdown: Callable[[], Awaitable[None]] | None = None,
) -> None:
    """Run one cycle, or poll forever when WORKER_MODE=loop.

    A failed cycle in loop mode is logged and retried on the next poll;
    in once mode it propagates so the process exits non-zero.
    """
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        if settings.worker_mode == "once":
            stats = await cycle()
            WORKER_CYCLES_TOTAL.labels(worker=name, outcome="ok").inc()
            logger.info("%s stats: %s", name, dict(stats))
            return

        logger.info("%s polling every %ss", name, poll_seconds)
        while True:
            try:
                stats = await cycle()
                WORKER_CYCLES_TOTAL.labels(worker=name, outcome="ok").inc()
                logger.info("%s stats: %s", name, dict(stats))
            except Exception:
                WORKER_CYCLES_TOTAL.labels(worker=name, outcome="error").inc()
                logger.exception("%s cycle failed", name)
            await asyncio.sleep(poll_seconds)
    finally:
        if shutdown is not None:
            await shutdown()
