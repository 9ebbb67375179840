"""HTTP client a participant uses to drive a session."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

import httpx

from app.modules.booking.schemas import BookingRead
from app.modules.sessions.schemas import JoinTicket

logger = logging.getLogger(__name__)


class BookingApiError(RuntimeError):
    """Raised when the API answers with an error envelope."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class BookingApiClient:
    """Authenticated client for booking and session endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        code, message, details = "http_error", response.text[:500], None
        try:
            error = response.json().get("error", {})
            code = error.get("code", code)
            message = error.get("message", message)
            details = error.get("details")
        except (ValueError, AttributeError):
            pass
        raise BookingApiError(response.status_code, code, message, details)

    async def _call(self, method: str, path: str) -> Any:
        try:
            response = await self._http.request(method, path)
        except httpx.HTTPError as exc:
            raise BookingApiError(0, "unreachable", str(exc)) from exc
        self._raise_for_error(response)
        return response.json()

    async def get_booking(self, booking_id: UUID) -> BookingRead:
        return BookingRead.model_validate(await self._call("GET", f"/bookings/{booking_id}"))

    async def join(self, booking_id: UUID) -> JoinTicket:
        return JoinTicket.model_validate(await self._call("POST", f"/sessions/{booking_id}/join"))

    async def mark_in_progress(self, booking_id: UUID) -> BookingRead:
        return BookingRead.model_validate(await self._call("POST", f"/sessions/{booking_id}/in-progress"))

    async def complete(self, booking_id: UUID) -> BookingRead:
        return BookingRead.model_validate(await self._call("POST", f"/sessions/{booking_id}/complete"))

    async def cancel_no_show(self, booking_id: UUID) -> BookingRead:
        return BookingRead.model_validate(await self._call("POST", f"/sessions/{booking_id}/no-show"))

    @asynccontextmanager
    async def subscribe(self, booking_id: UUID) -> AsyncIterator[AsyncIterator[dict[str, Any]]]:
        """Follow the server-sent change stream of one booking."""
        async with self._http.stream(
            "GET",
            f"/sessions/{booking_id}/events",
            timeout=httpx.Timeout(None),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                self._raise_for_error(response)

            async def _iterate() -> AsyncIterator[dict[str, Any]]:
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        yield json.loads(line[5:].strip())
                    except ValueError:
                        logger.warning("Dropping malformed event for booking %s", booking_id)

            yield _iterate()
