"""Per-participant controller of a live video session.

The controller never trusts local state over the server: every change hint
from the feed triggers a re-fetch of the booking, and countdowns are
recomputed from absolute deadlines on every tick. While the feed is down the
controller re-fetches on every tick instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from app.core.config import get_settings
from app.core.enums import BookingStatusEnum, SessionPhaseEnum
from app.modules.booking.schemas import BookingRead
from app.modules.sessions.client import BookingApiError
from app.modules.sessions.schemas import JoinTicket
from app.modules.sessions.state import TERMINAL_PHASES, SessionTiming, WarningTracker, phase_for_status
from app.shared.utils import seconds_until, utc_now

logger = logging.getLogger(__name__)


class SessionApi(Protocol):
    async def get_booking(self, booking_id: UUID) -> BookingRead: ...

    async def join(self, booking_id: UUID) -> JoinTicket: ...

    async def mark_in_progress(self, booking_id: UUID) -> BookingRead: ...

    async def complete(self, booking_id: UUID) -> BookingRead: ...

    async def cancel_no_show(self, booking_id: UUID) -> BookingRead: ...


class ChangeSource(Protocol):
    def subscribe(self, booking_id: UUID) -> AbstractAsyncContextManager[AsyncIterator[dict[str, Any]]]: ...


class RoomConnection(Protocol):
    """Video SDK seam."""

    async def connect(self, room_url: str, token: str) -> None: ...

    async def disconnect(self) -> None: ...

    def participant_count(self) -> int: ...


class SessionController:
    """Drive one participant through connecting, waiting, active and ending."""

    def __init__(
        self,
        booking_id: UUID,
        api: SessionApi,
        room: RoomConnection,
        feed: ChangeSource,
        *,
        clock: Callable[[], datetime] = utc_now,
        tick_seconds: float | None = None,
        warning_thresholds: tuple[int, ...] | None = None,
        early_join: timedelta | None = None,
        on_phase_change: Callable[[SessionPhaseEnum], None] | None = None,
        on_warning: Callable[[int], None] | None = None,
    ) -> None:
        settings = get_settings()
        self.booking_id = booking_id
        self.api = api
        self.room = room
        self.feed = feed
        self.clock = clock
        self.tick_seconds = tick_seconds or settings.session_tick_seconds
        self.early_join = early_join or timedelta(minutes=settings.session_early_join_minutes)
        self.warnings = WarningTracker(
            thresholds=tuple(warning_thresholds or settings.session_warning_thresholds_seconds),
        )
        self.on_phase_change = on_phase_change
        self.on_warning = on_warning

        self.phase = SessionPhaseEnum.CONNECTING
        self.record: BookingRead | None = None
        self.ticket: JoinTicket | None = None
        self.grace_remaining: int | None = None
        self.time_remaining: int | None = None
        self._connected = False
        self._no_show_requested = False
        self._feed_live = False
        self._stopped = asyncio.Event()

    @property
    def role(self) -> str | None:
        return self.ticket.role if self.ticket is not None else None

    @property
    def is_finished(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def _set_phase(self, phase: SessionPhaseEnum) -> None:
        if phase == self.phase:
            return
        logger.info("Session %s: %s -> %s", self.booking_id, self.phase.value, phase.value)
        self.phase = phase
        if phase in TERMINAL_PHASES:
            self._stopped.set()
        if self.on_phase_change is not None:
            self.on_phase_change(phase)

    def apply(self, record: BookingRead) -> None:
        """Adopt the authoritative record."""
        self.record = record
        derived = phase_for_status(record.status, record.both_joined_at)
        if derived in TERMINAL_PHASES:
            self._set_phase(derived)
        elif derived == SessionPhaseEnum.ACTIVE and self.phase == SessionPhaseEnum.WAITING:
            self._set_phase(SessionPhaseEnum.ACTIVE)

    async def refresh(self) -> None:
        try:
            record = await self.api.get_booking(self.booking_id)
        except BookingApiError as exc:
            if exc.status_code == 404:
                # withdrawn by a rolled-back booking saga
                self._set_phase(SessionPhaseEnum.CANCELLED)
                return
            logger.warning("Session %s refresh failed: %s", self.booking_id, exc)
            return
        self.apply(record)

    async def connect(self) -> None:
        """Check the join window locally, join on the server, enter the room."""
        self._set_phase(SessionPhaseEnum.CONNECTING)
        record = await self.api.get_booking(self.booking_id)
        self.apply(record)
        if self.is_finished:
            return

        timing = SessionTiming(
            scheduled_start=record.scheduled_start,
            duration=timedelta(minutes=record.duration_minutes),
            early_join=self.early_join,
        )
        timing.check_join(self.clock())

        self.ticket = await self.api.join(self.booking_id)
        await self.room.connect(self.ticket.room_url, self.ticket.token)
        self._connected = True
        self._set_phase(SessionPhaseEnum.WAITING)
        self.apply(record)

    async def tick(self) -> None:
        """Advance timers; safe to call late or repeatedly."""
        if self.ticket is None or self.phase not in (SessionPhaseEnum.WAITING, SessionPhaseEnum.ACTIVE):
            return
        if not self._feed_live:
            await self.refresh()
            if self.phase not in (SessionPhaseEnum.WAITING, SessionPhaseEnum.ACTIVE):
                return
        now = self.clock()

        if self.phase == SessionPhaseEnum.WAITING:
            if self.room.participant_count() >= 2:
                await self._activate()
            else:
                self.grace_remaining = seconds_until(self.ticket.grace_deadline, now)
                if self.grace_remaining == 0:
                    await self._grace_expired()
                return

        if self.phase == SessionPhaseEnum.ACTIVE:
            self.time_remaining = seconds_until(self.ticket.end_deadline, now)
            if self.time_remaining == 0:
                await self._finish()
                return
            threshold = self.warnings.due(self.time_remaining)
            if threshold is not None and self.on_warning is not None:
                self.on_warning(threshold)

    async def _activate(self) -> None:
        self._set_phase(SessionPhaseEnum.ACTIVE)
        if self.record is not None and self.record.status == BookingStatusEnum.IN_PROGRESS:
            return
        try:
            self.apply(await self.api.mark_in_progress(self.booking_id))
        except BookingApiError as exc:
            logger.warning("Session %s could not start: %s", self.booking_id, exc)
            await self.refresh()

    async def _grace_expired(self) -> None:
        if self.role != "payer":
            # the payer or the sweeper settles it; keep checking for the outcome
            if self._feed_live:
                await self.refresh()
            return
        if self._no_show_requested:
            return
        self._no_show_requested = True
        try:
            self.apply(await self.api.cancel_no_show(self.booking_id))
        except BookingApiError as exc:
            logger.warning("Session %s no-show rejected: %s", self.booking_id, exc)
            await self.refresh()

    async def _finish(self) -> None:
        self._set_phase(SessionPhaseEnum.ENDING)
        try:
            self.apply(await self.api.complete(self.booking_id))
        except BookingApiError as exc:
            logger.warning("Session %s completion failed: %s", self.booking_id, exc)
            await self.refresh()
        self._stopped.set()

    async def leave(self) -> None:
        """Hang up; completes an active call, otherwise only disconnects."""
        was_active = self.phase == SessionPhaseEnum.ACTIVE
        if not self.is_finished:
            self._set_phase(SessionPhaseEnum.ENDING)
        if was_active:
            try:
                self.apply(await self.api.complete(self.booking_id))
            except BookingApiError as exc:
                logger.warning("Session %s completion failed: %s", self.booking_id, exc)
        await self._disconnect()
        self._stopped.set()

    async def _disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self.room.disconnect()
        except Exception:
            logger.exception("Session %s room disconnect failed", self.booking_id)

    async def _listen(self, events: AsyncIterator[dict[str, Any]]) -> None:
        self._feed_live = True
        try:
            async for _ in events:
                await self.refresh()
                if self.is_finished:
                    return
        except Exception:
            logger.warning("Session %s change feed dropped, polling instead", self.booking_id, exc_info=True)
        finally:
            self._feed_live = False

    async def _subscribe(self, stack: contextlib.AsyncExitStack) -> asyncio.Task[None] | None:
        try:
            events = await stack.enter_async_context(self.feed.subscribe(self.booking_id))
        except Exception:
            logger.warning("Session %s change feed unavailable, polling instead", self.booking_id, exc_info=True)
            return None
        return asyncio.create_task(self._listen(events))

    async def run(self) -> SessionPhaseEnum:
        """Run until a terminal phase or until ``leave()``; may be called again to reconnect."""
        self._stopped = asyncio.Event()
        await self.connect()
        if self.is_finished:
            await self._disconnect()
            return self.phase

        async with contextlib.AsyncExitStack() as stack:
            listener = await self._subscribe(stack)
            try:
                await self.refresh()
                while not self._stopped.is_set():
                    await self.tick()
                    if self._stopped.is_set():
                        break
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(self._stopped.wait(), timeout=self.tick_seconds)
            finally:
                if listener is not None:
                    listener.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await listener
                self._feed_live = False
                await self._disconnect()
        return self.phase
