"""Per-booking change feed backends (in-memory and Redis pub/sub)."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol
from uuid import UUID

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ChangeFeed(Protocol):
    """Common contract for change feed backends.

    Payloads are hints that something changed; subscribers re-fetch the
    booking instead of trusting the payload.
    """

    async def publish(self, booking_id: UUID, payload: dict[str, Any]) -> int:
        """Publish a change; returns number of receivers, 0 on failure."""

    def subscribe(self, booking_id: UUID) -> AbstractAsyncContextManager[AsyncIterator[dict[str, Any]]]:
        """Subscribe to changes of one booking."""

    async def ping(self) -> bool:
        """Return True when the backend can deliver changes."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryChangeFeed:
    """Single-process feed built on asyncio queues."""

    def __init__(self, channel_prefix: str = "booking") -> None:
        self._channel_prefix = channel_prefix
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = defaultdict(set)

    def _channel(self, booking_id: UUID) -> str:
        return f"{self._channel_prefix}:{booking_id}"

    async def publish(self, booking_id: UUID, payload: dict[str, Any]) -> int:
        queues = self._subscribers.get(self._channel(booking_id), set())
        for queue in queues:
            queue.put_nowait(payload)
        return len(queues)

    @asynccontextmanager
    async def subscribe(self, booking_id: UUID) -> AsyncIterator[AsyncIterator[dict[str, Any]]]:
        channel = self._channel(booking_id)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers[channel].add(queue)

        async def _iterate() -> AsyncIterator[dict[str, Any]]:
            while True:
                yield await queue.get()

        try:
            yield _iterate()
        finally:
            self._subscribers[channel].discard(queue)
            if not self._subscribers[channel]:
                del self._subscribers[channel]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._subscribers.clear()


class RedisChangeFeed:
    """Redis pub/sub feed shared across app instances."""

    def __init__(self, *, redis_url: str, channel_prefix: str = "booking") -> None:
        self._redis_url = redis_url
        self._channel_prefix = channel_prefix
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None

    def _channel(self, booking_id: UUID) -> str:
        return f"{self._channel_prefix}:{booking_id}"

    async def _ensure_initialized(self) -> Any:
        if self._client is not None:
            return self._client

        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
        return self._client

    async def publish(self, booking_id: UUID, payload: dict[str, Any]) -> int:
        """Fire-and-forget publish; the database stays authoritative."""
        channel = self._channel(booking_id)
        try:
            client = await self._ensure_initialized()
            return int(await client.publish(channel, json.dumps(payload, default=str)))
        except Exception as exc:
            logger.error("Failed to publish change to %s: %s", channel, exc)
            return 0

    @asynccontextmanager
    async def subscribe(self, booking_id: UUID) -> AsyncIterator[AsyncIterator[dict[str, Any]]]:
        client = await self._ensure_initialized()
        channel = self._channel(booking_id)
        pubsub = client.pubsub()

        async def _iterate() -> AsyncIterator[dict[str, Any]]:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed change on %s", channel)

        try:
            await pubsub.subscribe(channel)
            logger.debug("Subscribed to %s", channel)
            yield _iterate()
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def ping(self) -> bool:
        try:
            client = await self._ensure_initialized()
            return bool(await client.ping())
        except Exception as exc:
            logger.warning("Change feed ping failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_change_feed: ChangeFeed | None = None
_change_feed_signature: tuple[str, str | None, str] | None = None


def _build_change_feed(settings: Settings) -> ChangeFeed:
    if settings.realtime_backend == "redis":
        return RedisChangeFeed(
            redis_url=settings.redis_url or "",
            channel_prefix=settings.realtime_channel_prefix,
        )
    return InMemoryChangeFeed(channel_prefix=settings.realtime_channel_prefix)


def get_change_feed() -> ChangeFeed:
    """Return shared change feed for configured backend."""
    global _change_feed, _change_feed_signature
    settings = get_settings()
    signature = (
        settings.realtime_backend,
        settings.redis_url,
        settings.realtime_channel_prefix,
    )
    if _change_feed is None or _change_feed_signature != signature:
        _change_feed = _build_change_feed(settings)
        _change_feed_signature = signature
    return _change_feed


async def close_change_feed() -> None:
    """Close the shared feed on shutdown."""
    global _change_feed, _change_feed_signature
    if _change_feed is not None:
        await _change_feed.close()
    _change_feed = None
    _change_feed_signature = None
