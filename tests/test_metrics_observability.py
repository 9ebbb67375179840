from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from fastapi import Request, Response

import app.main as main_module
import app.workers.runner as runner_module
from app.core.config import Settings
from app.core.metrics import build_metrics_response, instrument_http_request, record_saga_rollback
from app.shared.exceptions import (
    InsufficientCreditsException,
    RoomProvisioningException,
    SessionTimingException,
    app_exception_handler,
)


def _make_request(path: str, method: str = "GET") -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": [],
        "client": ("127.0.0.1", 12345),
        "scheme": "http",
        "server": ("testserver", 80),
        "query_string": b"",
    }
    return Request(scope)


def _metrics_text() -> str:
    return build_metrics_response().body.decode("utf-8")


@pytest.mark.asyncio
async def test_http_metrics_label_failed_requests_as_500() -> None:
    async def _boom(_: Request) -> Response:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await instrument_http_request(_make_request("/api/v1/bookings", method="POST"), _boom)

    payload = _metrics_text()
    assert 'videodates_http_requests_total{method="POST",path="/api/v1/bookings",status_code="500"}' in payload


def test_saga_rollbacks_are_labelled_by_failed_step() -> None:
    record_saga_rollback("create_booking", "provision_room")

    assert 'videodates_saga_rollbacks_total{saga="create_booking",step="provision_room"}' in _metrics_text()


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_domain_counters() -> None:
    response = await main_module.metrics_endpoint(_make_request("/metrics"))
    payload = response.body.decode("utf-8")

    assert response.status_code == 200
    assert "videodates_settlements_total" in payload
    assert "videodates_no_show_cancellations_total" in payload


@pytest.mark.asyncio
async def test_worker_runner_runs_one_cycle_and_shuts_down(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(runner_module, "get_settings", lambda: Settings(_env_file=None, worker_mode="once"))
    calls: list[str] = []

    async def cycle() -> dict[str, int]:
        calls.append("cycle")
        return {"processed": 2}

    async def shutdown() -> None:
        calls.append("shutdown")

    await runner_module.run_worker("test_worker", cycle, poll_seconds=0, shutdown=shutdown)

    assert calls == ["cycle", "shutdown"]
    assert 'videodates_worker_cycles_total{worker="test_worker",outcome="ok"}' in _metrics_text()


@pytest.mark.asyncio
async def test_failed_single_cycle_still_shuts_down(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(runner_module, "get_settings", lambda: Settings(_env_file=None, worker_mode="once"))
    closed: list[bool] = []

    async def cycle() -> dict[str, int]:
        raise ConnectionError("database is down")

    async def shutdown() -> None:
        closed.append(True)

    with pytest.raises(ConnectionError):
        await runner_module.run_worker("failing_worker", cycle, poll_seconds=0, shutdown=shutdown)
    assert closed == [True]


@pytest.mark.asyncio
async def test_error_envelope_carries_details() -> None:
    exc = InsufficientCreditsException("Session costs 150 credits, 100 available", required=150, available=100)

    response = await app_exception_handler(_make_request("/api/v1/bookings", method="POST"), exc)
    body = json.loads(response.body)

    assert response.status_code == 402
    assert body == {
        "error": {
            "code": "insufficient_credits",
            "message": "Session costs 150 credits, 100 available",
            "details": {"required": 150, "available": 100},
        },
    }


@pytest.mark.asyncio
async def test_error_envelope_serializes_datetimes_and_omits_empty_details() -> None:
    timing = SessionTimingException(
        "Session is not open for joining yet",
        opens_at=datetime(2026, 3, 3, 9, 55, tzinfo=UTC),
    )
    provider = RoomProvisioningException("Room provider error 503")

    timing_body = json.loads((await app_exception_handler(_make_request("/join"), timing)).body)
    provider_body = json.loads((await app_exception_handler(_make_request("/bookings"), provider)).body)

    assert timing_body["error"]["details"] == {"opens_at": "2026-03-03T09:55:00+00:00"}
    assert "details" not in provider_body["error"]
