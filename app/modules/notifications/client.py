"""HTTP client for the notification delivery service."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import httpx

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationDeliveryError(RuntimeError):
    """Raised when the delivery service rejects or cannot take a notification."""


class NotificationClient:
    """Deliver account notifications.

    Without a configured endpoint notifications are only logged, which is the
    development default.
    """

    def __init__(
        self,
        *,
        base_url: str | None,
        api_key: str | None = None,
        timeout_seconds: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http: httpx.AsyncClient | None = None
        if base_url:
            headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
            self._http = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                headers=headers,
                timeout=httpx.Timeout(timeout_seconds),
                transport=transport,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationClient":
        return cls(
            base_url=settings.notifications_api_url,
            api_key=settings.notifications_api_key,
            timeout_seconds=settings.notifications_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    async def send(self, account_id: UUID, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver one notification; raises NotificationDeliveryError on failure."""
        if self._http is None:
            logger.info("Notification %s for %s: %s", event_type, account_id, payload)
            return

        body = {"account_id": str(account_id), "event_type": event_type, "payload": payload}
        try:
            response = await self._http.post("/notifications", json=body)
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(f"Notification service unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise NotificationDeliveryError(f"Notification service error {response.status_code}")

    async def notify(self, account_id: UUID, event_type: str, payload: dict[str, Any]) -> bool:
        """Best-effort delivery; failures are logged and swallowed."""
        try:
            await self.send(account_id, event_type, payload)
        except NotificationDeliveryError as exc:
            logger.warning("Dropped notification %s for %s: %s", event_type, account_id, exc)
            return False
        return True


_notification_client: NotificationClient | None = None


def get_notification_client() -> NotificationClient:
    """Return shared notification client."""
    global _notification_client
    if _notification_client is None:
        _notification_client = NotificationClient.from_settings(get_settings())
    return _notification_client


async def close_notification_client() -> None:
    global _notification_client
    if _notification_client is not None:
        await _notification_client.aclose()
    _notification_client = None
