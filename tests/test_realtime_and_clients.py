from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from uuid import uuid4

import httpx
import pytest

from app.core.enums import BookingStatusEnum
from app.core.realtime import InMemoryChangeFeed
from app.modules.notifications.client import NotificationClient, NotificationDeliveryError
from app.modules.sessions.client import BookingApiClient, BookingApiError


@pytest.mark.asyncio
async def test_in_memory_feed_delivers_only_to_subscribers_of_the_booking() -> None:
    feed = InMemoryChangeFeed()
    booking_id, other_id = uuid4(), uuid4()

    async with feed.subscribe(booking_id) as events:
        assert await feed.publish(other_id, {"status": "cancelled"}) == 0
        assert await feed.publish(booking_id, {"status": "scheduled"}) == 1
        received = await asyncio.wait_for(anext(events), timeout=1)

    assert received == {"status": "scheduled"}
    assert await feed.publish(booking_id, {"status": "completed"}) == 0


@pytest.mark.asyncio
async def test_notification_client_posts_event_for_account() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/notifications"
        assert request.headers["Authorization"] == "Bearer key"
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    account_id = uuid4()
    client = NotificationClient(
        base_url="https://notify.example.test",
        api_key="key",
        transport=httpx.MockTransport(handler),
    )
    await client.send(account_id, "booking_confirmed", {"booking_id": "b-1"})
    await client.aclose()

    assert seen == [{"account_id": str(account_id), "event_type": "booking_confirmed", "payload": {"booking_id": "b-1"}}]


@pytest.mark.asyncio
async def test_notification_send_raises_but_notify_swallows_failures() -> None:
    client = NotificationClient(
        base_url="https://notify.example.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    with pytest.raises(NotificationDeliveryError):
        await client.send(uuid4(), "booking_requested", {})
    assert await client.notify(uuid4(), "booking_requested", {}) is False
    await client.aclose()


@pytest.mark.asyncio
async def test_notification_client_without_endpoint_only_logs() -> None:
    client = NotificationClient(base_url=None)

    assert await client.notify(uuid4(), "booking_requested", {"booking_id": "b-1"}) is True
    await client.aclose()


def _booking_json(booking_id, status: BookingStatusEnum) -> dict:
    start = datetime(2026, 3, 3, 10, 0, tzinfo=UTC)
    return {
        "id": str(booking_id),
        "payer_id": str(uuid4()),
        "payee_id": str(uuid4()),
        "scheduled_start": start.isoformat(),
        "scheduled_end": start.replace(minute=30).isoformat(),
        "duration_minutes": 30,
        "credits_reserved": 150,
        "payee_payout": 105,
        "platform_fee": 45,
        "status": status.value,
        "room_url": "https://meet.example.test/session",
        "payer_joined_at": None,
        "payee_joined_at": None,
        "both_joined_at": None,
        "actual_start": None,
        "actual_end": None,
        "cancelled_at": None,
        "cancellation_reason": None,
        "settled_at": None,
        "created_at": start.isoformat(),
        "updated_at": start.isoformat(),
    }


@pytest.mark.asyncio
async def test_booking_api_client_parses_records_and_error_envelopes() -> None:
    booking_id = uuid4()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer access"
        if request.url.path == f"/api/v1/bookings/{booking_id}":
            return httpx.Response(200, json=_booking_json(booking_id, BookingStatusEnum.SCHEDULED))
        return httpx.Response(
            422,
            json={
                "error": {
                    "code": "session_timing",
                    "message": "Grace period has not elapsed yet",
                    "details": {"grace_deadline": "2026-03-03T10:05:00+00:00"},
                },
            },
        )

    client = BookingApiClient(
        base_url="https://api.example.test/api/v1",
        access_token="access",
        transport=httpx.MockTransport(handler),
    )
    record = await client.get_booking(booking_id)
    with pytest.raises(BookingApiError) as exc:
        await client.cancel_no_show(booking_id)
    await client.aclose()

    assert record.status == BookingStatusEnum.SCHEDULED
    assert exc.value.status_code == 422
    assert exc.value.code == "session_timing"
    assert exc.value.details == {"grace_deadline": "2026-03-03T10:05:00+00:00"}


@pytest.mark.asyncio
async def test_booking_api_client_reads_server_sent_events() -> None:
    booking_id = uuid4()
    stream = (
        ": connected\n\n"
        f'data: {{"booking_id": "{booking_id}", "status": "in_progress"}}\n\n'
        "data: not-json\n\n"
        f'data: {{"booking_id": "{booking_id}", "status": "completed"}}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/sessions/{booking_id}/events"
        return httpx.Response(200, content=stream.encode(), headers={"Content-Type": "text/event-stream"})

    client = BookingApiClient(
        base_url="https://api.example.test",
        access_token="access",
        transport=httpx.MockTransport(handler),
    )
    async with client.subscribe(booking_id) as events:
        received = [event["status"] async for event in events]
    await client.aclose()

    assert received == ["in_progress", "completed"]
