"""Video room provider client (Daily-style REST API).

Rooms are private and expire shortly after the scheduled end; each party
joins with its own meeting token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from app.core.config import Settings, get_settings
from app.shared.exceptions import RoomProvisioningException

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class Room:
    """Provisioned room."""

    name: str
    url: str


class RoomProvider:
    """Async HTTP client for the room provider with bounded retry."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self._max_retries = max_retries
        self._retry_delay_seconds = retry_delay_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoomProvider":
        return cls(
            base_url=settings.room_provider_api_url,
            api_key=settings.room_provider_api_key,
            timeout_seconds=settings.room_provider_timeout_seconds,
            max_retries=settings.room_provider_max_retries,
            retry_delay_seconds=settings.room_provider_retry_delay_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                response = await self._http.request(method, path, json=json_body)
            except httpx.TransportError as exc:
                if attempt < self._max_retries:
                    attempt += 1
                    logger.warning("Room provider %s %s failed (%s), retry %d", method, path, exc, attempt)
                    await asyncio.sleep(self._retry_delay_seconds * attempt)
                    continue
                logger.error("Room provider unreachable for %s %s: %s", method, path, exc)
                raise RoomProvisioningException(f"Room provider unreachable: {exc}") from exc

            if response.status_code in _RETRYABLE_STATUS_CODES and attempt < self._max_retries:
                attempt += 1
                logger.warning(
                    "Room provider %s %s returned %s, retry %d",
                    method,
                    path,
                    response.status_code,
                    attempt,
                )
                await asyncio.sleep(self._retry_delay_seconds * attempt)
                continue

            if allow_not_found and response.status_code == 404:
                return {}
            if response.status_code >= 400:
                logger.error(
                    "Room provider error %s for %s %s: %s",
                    response.status_code,
                    method,
                    path,
                    response.text[:500],
                )
                raise RoomProvisioningException(f"Room provider error {response.status_code}")
            if not response.content:
                return {}
            return response.json()

    async def create_room(self, name: str, expires_at: datetime) -> Room:
        """Create a private two-person room that ejects everyone at expiry."""
        body = {
            "name": name,
            "privacy": "private",
            "properties": {
                "exp": int(expires_at.timestamp()),
                "eject_at_room_exp": True,
                "max_participants": 2,
                "enable_prejoin_ui": False,
            },
        }
        data = await self._request("POST", "/rooms", json_body=body)
        url = data.get("url")
        if not isinstance(url, str) or not url:
            raise RoomProvisioningException("Room provider returned no room url")
        return Room(name=str(data.get("name") or name), url=url)

    async def create_token(self, room_name: str, participant_id: str, expires_at: datetime) -> str:
        """Issue a meeting token that admits one participant to one room."""
        body = {
            "properties": {
                "room_name": room_name,
                "user_id": participant_id,
                "exp": int(expires_at.timestamp()),
                "is_owner": False,
            },
        }
        data = await self._request("POST", "/meeting-tokens", json_body=body)
        token = data.get("token")
        if not isinstance(token, str) or not token:
            raise RoomProvisioningException("Room provider returned no meeting token")
        return token

    async def delete_room(self, room_name: str) -> None:
        """Delete a room; an already missing room counts as deleted."""
        await self._request("DELETE", f"/rooms/{room_name}", allow_not_found=True)


_room_provider: RoomProvider | None = None


def get_room_provider() -> RoomProvider:
    """Return shared room provider client."""
    global _room_provider
    if _room_provider is None:
        _room_provider = RoomProvider.from_settings(get_settings())
    return _room_provider


async def close_room_provider() -> None:
    global _room_provider
    if _room_provider is not None:
        await _room_provider.aclose()
    _room_provider = None


async def teardown_room(provider: RoomProvider, room_name: str | None) -> None:
    """Best-effort room deletion; the room expires on its own anyway."""
    if not room_name:
        return
    try:
        await provider.delete_room(room_name)
    except RoomProvisioningException as exc:
        logger.warning("Failed to delete room %s: %s", room_name, exc.message)
