from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

import pytest

import app.modules.scheduling.service as scheduling_service_module
from app.core.enums import (
    TERMINAL_BOOKING_STATUSES,
    BookingStatusEnum,
    LedgerEntryTypeEnum,
    ReservationStatusEnum,
    RoleEnum,
)
from app.core.security import Principal
from app.modules.booking.service import BookingService
from app.modules.ledger.service import LedgerService
from app.modules.rooms.provider import Room
from app.modules.scheduling.resolver import SlotRules
from app.modules.scheduling.service import SchedulingService
from app.modules.settlement.service import SettlementService
from app.shared.exceptions import (
    ConflictException,
    InsufficientCreditsException,
    NotFoundException,
    RoomProvisioningException,
    UnauthorizedException,
    ValidationException,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
START = datetime(2026, 3, 3, 10, 0, tzinfo=UTC)


@dataclass
class FakeBooking:
    payer_id: UUID
    payee_id: UUID
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    credits_reserved: int
    payee_payout: int
    platform_fee: int
    status: BookingStatusEnum = BookingStatusEnum.DRAFT
    id: UUID = field(default_factory=uuid4)
    room_name: str | None = None
    room_url: str | None = None
    payer_token: str | None = None
    payee_token: str | None = None
    payer_joined_at: datetime | None = None
    payee_joined_at: datetime | None = None
    both_joined_at: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    settled_at: datetime | None = None
    created_at: datetime = NOW
    updated_at: datetime = NOW

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES


class FakeBookingRepository:
    def __init__(self) -> None:
        self.bookings: dict[UUID, FakeBooking] = {}
        self.commits = 0
        self.rollbacks = 0

    async def create_draft(self, **values: Any) -> FakeBooking:
        booking = FakeBooking(
            scheduled_end=values["scheduled_start"] + timedelta(minutes=values["duration_minutes"]),
            **values,
        )
        self.bookings[booking.id] = booking
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> FakeBooking | None:
        return self.bookings.get(booking_id)

    async def list_bookings(self, participant_id: UUID | None, limit: int, offset: int) -> tuple[list, int]:
        items = [
            booking
            for booking in self.bookings.values()
            if booking.status != BookingStatusEnum.DRAFT
            and (participant_id is None or participant_id in (booking.payer_id, booking.payee_id))
        ]
        return items[offset : offset + limit], len(items)

    async def list_non_terminal_for_payee(
        self,
        payee_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[FakeBooking]:
        return [
            booking
            for booking in self.bookings.values()
            if booking.payee_id == payee_id
            and not booking.is_terminal
            and booking.scheduled_start < range_end
            and booking.scheduled_end > range_start
        ]

    async def transition(self, booking_id, expected, new, *, conditions=(), **values) -> FakeBooking | None:
        booking = self.bookings.get(booking_id)
        if isinstance(expected, BookingStatusEnum):
            expected = (expected,)
        if booking is None or booking.status not in expected:
            return None
        # The only extra condition callers pass is "both_joined_at IS NULL".
        if conditions and booking.both_joined_at is not None:
            return None
        booking.status = new
        for key, value in values.items():
            setattr(booking, key, value)
        return booking

    async def mark_settled(self, booking_id: UUID, settled_at: datetime) -> FakeBooking | None:
        booking = self.bookings[booking_id]
        if booking.settled_at is not None:
            return None
        booking.settled_at = settled_at
        return booking

    async def delete_booking(self, booking_id: UUID, statuses=(BookingStatusEnum.DRAFT, BookingStatusEnum.PENDING)) -> None:
        booking = self.bookings.get(booking_id)
        if booking is not None and booking.status in statuses:
            del self.bookings[booking_id]

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


@dataclass
class FakeReservation:
    booking_id: UUID
    account_id: UUID
    amount: int
    status: ReservationStatusEnum = ReservationStatusEnum.HELD


class FakeLedgerRepository:
    def __init__(self, balances: dict[UUID, int]) -> None:
        self.accounts = {
            account_id: SimpleNamespace(balance=balance, held=0) for account_id, balance in balances.items()
        }
        self.reservations: dict[UUID, FakeReservation] = {}
        self.entries: list[tuple[UUID, LedgerEntryTypeEnum, int]] = []

    async def get_account(self, account_id: UUID):
        return self.accounts.get(account_id)

    async def ensure_account(self, account_id: UUID) -> None:
        self.accounts.setdefault(account_id, SimpleNamespace(balance=0, held=0))

    async def add_to_balance(self, account_id: UUID, amount: int) -> None:
        self.accounts[account_id].balance += amount

    async def try_hold(self, account_id: UUID, amount: int) -> bool:
        account = self.accounts[account_id]
        if account.balance - account.held < amount:
            return False
        account.held += amount
        return True

    async def unhold(self, account_id: UUID, amount: int) -> None:
        self.accounts[account_id].held -= amount

    async def debit_held(self, account_id: UUID, amount: int) -> None:
        self.accounts[account_id].balance -= amount
        self.accounts[account_id].held -= amount

    async def create_reservation(self, booking_id: UUID, account_id: UUID, amount: int) -> FakeReservation:
        reservation = FakeReservation(booking_id=booking_id, account_id=account_id, amount=amount)
        self.reservations[booking_id] = reservation
        return reservation

    async def get_reservation(self, booking_id: UUID) -> FakeReservation | None:
        return self.reservations.get(booking_id)

    async def claim_reservation(self, booking_id: UUID, status: ReservationStatusEnum, at: datetime):
        reservation = self.reservations.get(booking_id)
        if reservation is None or reservation.status != ReservationStatusEnum.HELD:
            return None
        reservation.status = status
        return reservation

    async def add_entry(self, account_id: UUID, entry_type: LedgerEntryTypeEnum, amount: int, booking_id=None):
        self.entries.append((account_id, entry_type, amount))


class FakeSchedulingRepository:
    def __init__(self, rates: dict[tuple[UUID, int], int]) -> None:
        self.rates = rates

    async def list_windows(self, payee_id: UUID) -> list:
        return []

    async def get_rate(self, payee_id: UUID, duration_minutes: int):
        credits = self.rates.get((payee_id, duration_minutes))
        if credits is None:
            return None
        return SimpleNamespace(payee_id=payee_id, duration_minutes=duration_minutes, credits=credits)


class FakeAuditRepository:
    def __init__(self) -> None:
        self.events: list[dict] = []
        self.logs: list[dict] = []

    async def enqueue_booking_event(self, booking_id, event_type: str, payload: dict) -> None:
        self.events.append({"booking_id": booking_id, "event_type": event_type, "payload": payload})

    async def record_action(self, **kwargs) -> None:
        self.logs.append(kwargs)


class FakeRoomProvider:
    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.rooms: dict[str, datetime] = {}
        self.deleted: list[str] = []

    async def create_room(self, name: str, expires_at: datetime) -> Room:
        if self.fail_on == "room":
            raise RoomProvisioningException("Room provider error 503")
        self.rooms[name] = expires_at
        return Room(name=name, url=f"https://rooms.example.test/{name}")

    async def create_token(self, room_name: str, participant_id: str, expires_at: datetime) -> str:
        if self.fail_on == "token":
            raise RoomProvisioningException("Room provider error 500")
        return f"token-{participant_id}"

    async def delete_room(self, room_name: str) -> None:
        self.deleted.append(room_name)


class FakeNotificationClient:
    def __init__(self) -> None:
        self.sent: list[tuple[UUID, str, dict]] = []

    async def notify(self, account_id: UUID, event_type: str, payload: dict) -> bool:
        self.sent.append((account_id, event_type, payload))
        return True


class FakeChangeFeed:
    def __init__(self) -> None:
        self.published: list[tuple[UUID, dict]] = []

    async def publish(self, booking_id: UUID, payload: dict) -> int:
        self.published.append((booking_id, payload))
        return 1


@dataclass
class Harness:
    service: BookingService
    bookings: FakeBookingRepository
    ledger: LedgerService
    ledger_repository: FakeLedgerRepository
    audit: FakeAuditRepository
    rooms: FakeRoomProvider
    notifications: FakeNotificationClient
    feed: FakeChangeFeed


def make_harness(
    monkeypatch: pytest.MonkeyPatch,
    *,
    balances: dict[UUID, int],
    rates: dict[tuple[UUID, int], int],
    fail_on: str | None = None,
) -> Harness:
    monkeypatch.setattr(scheduling_service_module, "utc_now", lambda: NOW)

    bookings = FakeBookingRepository()
    ledger_repository = FakeLedgerRepository(balances)
    audit = FakeAuditRepository()
    ledger = LedgerService(ledger_repository, audit)  # type: ignore[arg-type]
    rooms = FakeRoomProvider(fail_on=fail_on)
    notifications = FakeNotificationClient()
    feed = FakeChangeFeed()
    service = BookingService(
        repository=bookings,  # type: ignore[arg-type]
        scheduling_service=SchedulingService(
            FakeSchedulingRepository(rates),  # type: ignore[arg-type]
            bookings,  # type: ignore[arg-type]
            rules=SlotRules(),
        ),
        ledger_service=ledger,
        settlement_service=SettlementService(ledger, bookings),  # type: ignore[arg-type]
        audit_repository=audit,  # type: ignore[arg-type]
        room_provider=rooms,  # type: ignore[arg-type]
        notification_client=notifications,  # type: ignore[arg-type]
        change_feed=feed,
        payee_share_percent=70,
        room_expiry_buffer=timedelta(minutes=30),
    )
    return Harness(service, bookings, ledger, ledger_repository, audit, rooms, notifications, feed)


def member(account_id: UUID) -> Principal:
    return Principal(id=account_id, role=RoleEnum.MEMBER)


@pytest.mark.asyncio
async def test_create_booking_provisions_room_and_holds_credits(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})

    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert booking.status == BookingStatusEnum.PENDING
    assert booking.scheduled_end == START + timedelta(minutes=30)
    assert (booking.credits_reserved, booking.payee_payout, booking.platform_fee) == (150, 105, 45)
    assert booking.room_name == f"session-{booking.id.hex}"
    assert booking.room_url is not None
    assert booking.payer_token == f"token-{payer_id}"
    assert booking.payee_token == f"token-{payee_id}"
    assert h.rooms.rooms[booking.room_name] == START + timedelta(minutes=60)

    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held, balance.available) == (200, 150, 50)

    assert [event["event_type"] for event in h.audit.events] == ["booking.requested"]
    assert h.notifications.sent[0][0] == payee_id
    assert h.notifications.sent[0][1] == "booking_requested"
    assert [payload["status"] for _, payload in h.feed.published] == ["pending", "pending"]


@pytest.mark.asyncio
async def test_insufficient_credits_leaves_no_booking_and_no_hold(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 100}, rates={(payee_id, 30): 150})

    with pytest.raises(InsufficientCreditsException):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.bookings.bookings == {}
    assert h.ledger_repository.reservations == {}
    assert h.rooms.rooms == {}
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held) == (100, 0)


@pytest.mark.asyncio
async def test_room_failure_releases_credits_and_removes_booking(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150}, fail_on="room")

    with pytest.raises(RoomProvisioningException):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.bookings.bookings == {}
    (reservation,) = h.ledger_repository.reservations.values()
    assert reservation.status == ReservationStatusEnum.RELEASED
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held, balance.available) == (200, 0, 200)
    assert h.notifications.sent == []
    assert h.audit.events == []


@pytest.mark.asyncio
async def test_token_failure_tears_down_created_room(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150}, fail_on="token")

    with pytest.raises(RoomProvisioningException):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.rooms.deleted == list(h.rooms.rooms)
    assert len(h.rooms.deleted) == 1
    assert h.bookings.bookings == {}
    assert (await h.ledger.get_balance(payer_id)).available == 200


@pytest.mark.asyncio
async def test_failed_commit_after_room_tears_room_down_and_withdraws_booking(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    commit = h.bookings.commit
    failed: list[bool] = []

    async def commit_fails_once_room_exists() -> None:
        if h.rooms.rooms and not failed:
            failed.append(True)
            raise ConnectionError("connection reset")
        await commit()

    monkeypatch.setattr(h.bookings, "commit", commit_fails_once_room_exists)

    with pytest.raises(ConnectionError):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.rooms.deleted == list(h.rooms.rooms)
    assert len(h.rooms.deleted) == 1
    assert h.bookings.bookings == {}
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held, balance.available) == (200, 0, 200)
    assert [payload["status"] for _, payload in h.feed.published] == ["pending", "withdrawn"]
    assert h.notifications.sent == []


@pytest.mark.asyncio
async def test_spend_between_balance_check_and_hold_removes_draft(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})

    async def spent_elsewhere(account_id: UUID, amount: int) -> bool:
        return False

    monkeypatch.setattr(h.ledger_repository, "try_hold", spent_elsewhere)

    with pytest.raises(InsufficientCreditsException):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.bookings.bookings == {}
    assert h.ledger_repository.reservations == {}
    assert h.rooms.rooms == {}
    assert h.feed.published == []
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held, balance.available) == (200, 0, 200)


@pytest.mark.asyncio
async def test_lost_publish_releases_credits_and_removes_draft(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})

    async def draft_changed_underneath(booking_id, expected, new, *, conditions=(), **values):
        return None

    monkeypatch.setattr(h.bookings, "transition", draft_changed_underneath)

    with pytest.raises(ConflictException):
        await h.service.create_booking(member(payer_id), payee_id, START, 30)

    assert h.bookings.bookings == {}
    (reservation,) = h.ledger_repository.reservations.values()
    assert reservation.status == ReservationStatusEnum.RELEASED
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held, balance.available) == (200, 0, 200)
    assert h.rooms.rooms == {}
    assert h.feed.published == []


@pytest.mark.asyncio
async def test_payee_accepts_requested_booking_once(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)

    with pytest.raises(UnauthorizedException):
        await h.service.accept_booking(booking.id, member(payer_id))

    accepted = await h.service.accept_booking(booking.id, member(payee_id))
    again = await h.service.accept_booking(booking.id, member(payee_id))

    assert accepted.status == BookingStatusEnum.SCHEDULED
    assert again is accepted
    assert [event["event_type"] for event in h.audit.events] == ["booking.requested", "booking.scheduled"]
    assert [log["action"] for log in h.audit.logs] == ["booking.accepted"]
    assert h.feed.published[-1][1]["status"] == "scheduled"
    assert (await h.ledger.get_balance(payer_id)).held == 150


@pytest.mark.asyncio
async def test_declined_booking_cannot_be_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)
    await h.service.decline_booking(booking.id, member(payee_id))

    with pytest.raises(ConflictException):
        await h.service.accept_booking(booking.id, member(payee_id))
    assert (await h.ledger.get_balance(payer_id)).available == 200


@pytest.mark.asyncio
async def test_overlapping_request_is_conflict_without_hold(monkeypatch: pytest.MonkeyPatch) -> None:
    first_payer, second_payer, payee_id = uuid4(), uuid4(), uuid4()
    h = make_harness(
        monkeypatch,
        balances={first_payer: 500, second_payer: 500},
        rates={(payee_id, 60): 200, (payee_id, 30): 120},
    )
    await h.service.create_booking(member(first_payer), payee_id, START, 60)

    with pytest.raises(ConflictException):
        await h.service.create_booking(member(second_payer), payee_id, START + timedelta(minutes=30), 30)

    assert (await h.ledger.get_balance(second_payer)).held == 0
    assert len(h.bookings.bookings) == 1


@pytest.mark.asyncio
async def test_booking_yourself_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    account_id = uuid4()
    h = make_harness(monkeypatch, balances={account_id: 500}, rates={(account_id, 30): 100})

    with pytest.raises(ValidationException):
        await h.service.create_booking(member(account_id), account_id, START, 30)


@pytest.mark.asyncio
async def test_unpriced_duration_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 500}, rates={(payee_id, 30): 100})

    with pytest.raises(ValidationException):
        await h.service.create_booking(member(payer_id), payee_id, START, 60)
    assert h.bookings.bookings == {}


@pytest.mark.asyncio
async def test_cancel_refunds_once_and_repeats_are_noops(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)

    cancelled = await h.service.cancel_booking(booking.id, member(payer_id), "changed my mind")
    again = await h.service.cancel_booking(booking.id, member(payer_id))

    assert cancelled.status == BookingStatusEnum.CANCELLED
    assert cancelled.cancellation_reason == "changed my mind"
    assert cancelled.settled_at is not None
    assert again is cancelled
    balance = await h.ledger.get_balance(payer_id)
    assert (balance.balance, balance.held) == (200, 0)
    releases = [entry for entry in h.ledger_repository.entries if entry[1] == LedgerEntryTypeEnum.RELEASE]
    assert len(releases) == 1
    assert h.rooms.deleted == [booking.room_name]
    assert h.audit.events[-1]["event_type"] == "booking.cancelled"


@pytest.mark.asyncio
async def test_only_payee_can_decline(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)

    with pytest.raises(UnauthorizedException):
        await h.service.decline_booking(booking.id, member(payer_id))

    declined = await h.service.decline_booking(booking.id, member(payee_id))
    assert declined.status == BookingStatusEnum.DECLINED
    assert (await h.ledger.get_balance(payer_id)).available == 200


@pytest.mark.asyncio
async def test_started_session_cannot_be_cancelled(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={payer_id: 200}, rates={(payee_id, 30): 150})
    booking = await h.service.create_booking(member(payer_id), payee_id, START, 30)
    booking.status = BookingStatusEnum.IN_PROGRESS
    booking.both_joined_at = START

    with pytest.raises(ConflictException):
        await h.service.cancel_booking(booking.id, member(payer_id))
    assert (await h.ledger.get_balance(payer_id)).held == 150


@pytest.mark.asyncio
async def test_outsiders_and_payees_cannot_see_drafts(monkeypatch: pytest.MonkeyPatch) -> None:
    payer_id, payee_id = uuid4(), uuid4()
    h = make_harness(monkeypatch, balances={}, rates={})
    draft = await h.bookings.create_draft(
        payer_id=payer_id,
        payee_id=payee_id,
        scheduled_start=START,
        duration_minutes=30,
        credits_reserved=100,
        payee_payout=70,
        platform_fee=30,
    )

    assert (await h.service.get_booking(draft.id, member(payer_id))) is draft
    with pytest.raises(NotFoundException):
        await h.service.get_booking(draft.id, member(payee_id))
    with pytest.raises(NotFoundException):
        await h.service.get_booking(draft.id, member(uuid4()))
    assert (await h.service.get_booking(draft.id, Principal(id=uuid4(), role=RoleEnum.ADMIN))) is draft
