"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from app.core.config import get_settings
from app.core.database import close_engine, ping_database
from app.core.metrics import build_metrics_response, instrument_http_request
from app.core.realtime import close_change_feed, get_change_feed
from app.modules.audit.router import router as audit_router
from app.modules.booking.router import router as booking_router
from app.modules.ledger.router import router as ledger_router
from app.modules.notifications.client import close_notification_client
from app.modules.notifications.router import router as notifications_router
from app.modules.rooms.provider import close_room_provider
from app.modules.scheduling.router import router as scheduling_router
from app.modules.sessions.router import router as sessions_router
from app.shared.exceptions import register_exception_handlers
from app.shared.utils import utc_now

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Application startup and shutdown hooks."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info("Starting %s (realtime backend: %s)", settings.app_name, settings.realtime_backend)

    yield

    logger.info("Shutting down %s", settings.app_name)
    await close_room_provider()
    await close_notification_client()
    await close_change_feed()
    await close_engine()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)
app.middleware("http")(instrument_http_request)

register_exception_handlers(app)

app.include_router(ledger_router, prefix=settings.api_prefix)
app.include_router(scheduling_router, prefix=settings.api_prefix)
app.include_router(booking_router, prefix=settings.api_prefix)
app.include_router(sessions_router, prefix=settings.api_prefix)
app.include_router(notifications_router, prefix=settings.api_prefix)
app.include_router(audit_router, prefix=settings.api_prefix)


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "ok"}


async def _is_database_ready() -> bool:
    """Return True if DB accepts basic queries."""
    try:
        await ping_database()
        return True
    except Exception:
        logger.exception("Database readiness check failed")
        return False


async def _is_change_feed_ready() -> bool:
    """Return True if the configured change feed backend answers."""
    return await get_change_feed().ping()


@app.get("/ready")
async def readiness_check() -> dict[str, str]:
    """Readiness probe: the database is required, the change feed only degrades."""
    if not await _is_database_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is not ready",
        )
    change_feed_ok = await _is_change_feed_ready()
    return {
        "status": "ready" if change_feed_ok else "degraded",
        "database": "ok",
        "change_feed": "ok" if change_feed_ok else "unavailable",
        "change_feed_backend": settings.realtime_backend,
        "timestamp": utc_now().isoformat(),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(_: Request) -> Response:
    """Prometheus metrics endpoint."""
    return build_metrics_response()
