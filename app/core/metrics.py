"""Prometheus metrics for HTTP traffic and the booking lifecycle."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from time import perf_counter

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

HTTP_REQUESTS_TOTAL = Counter(
    "videodates_http_requests_total",
    "Total number of HTTP requests handled by the API.",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "videodates_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

BOOKINGS_CREATED_TOTAL = Counter(
    "videodates_bookings_created_total",
    "Bookings that reached the scheduled state.",
)

SAGA_ROLLBACKS_TOTAL = Counter(
    "videodates_saga_rollbacks_total",
    "Saga runs rolled back, by saga and failed step.",
    ["saga", "step"],
)

SETTLEMENTS_TOTAL = Counter(
    "videodates_settlements_total",
    "Settlement attempts by outcome.",
    ["outcome"],
)

NO_SHOW_CANCELLATIONS_TOTAL = Counter(
    "videodates_no_show_cancellations_total",
    "Bookings cancelled because a party never showed up, by trigger.",
    ["trigger"],
)

NOTIFICATIONS_DISPATCHED_TOTAL = Counter(
    "videodates_notifications_dispatched_total",
    "Notifications handed to the delivery service, by notification type.",
    ["event_type"],
)

OUTBOX_DELIVERY_FAILURES_TOTAL = Counter(
    "videodates_outbox_delivery_failures_total",
    "Outbox events whose delivery attempt failed, by event type.",
    ["event_type"],
)

WORKER_CYCLES_TOTAL = Counter(
    "videodates_worker_cycles_total",
    "Background worker cycles, by worker and outcome.",
    ["worker", "outcome"],
)


def record_saga_rollback(saga: str, step: str) -> None:
    """Saga runner rollback hook."""
    SAGA_ROLLBACKS_TOTAL.labels(saga=saga, step=step).inc()


def _request_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    if route_path:
        return str(route_path)
    return request.url.path


async def instrument_http_request(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Track request count and latency for each endpoint."""
    started_at = perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path_label = _request_path_label(request)
        method_label = request.method.upper()
        duration_seconds = perf_counter() - started_at

        HTTP_REQUESTS_TOTAL.labels(
            method=method_label,
            path=path_label,
            status_code=str(status_code),
        ).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(
            method=method_label,
            path=path_label,
        ).observe(duration_seconds)


def build_metrics_response() -> Response:
    """Return metrics payload in Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
