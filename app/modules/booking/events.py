"""Payloads describing booking changes for the feed and the outbox."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from app.modules.booking.models import Booking


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def change_payload(booking: Booking) -> dict[str, Any]:
    """Realtime hint; receivers re-fetch the booking."""
    return {
        "booking_id": str(booking.id),
        "status": str(booking.status),
        "both_joined_at": _iso(booking.both_joined_at),
        "updated_at": _iso(booking.updated_at),
    }


def outbox_payload(booking: Booking, **extra: Any) -> dict[str, Any]:
    payload = {
        "booking_id": str(booking.id),
        "payer_id": str(booking.payer_id),
        "payee_id": str(booking.payee_id),
        "status": str(booking.status),
        "scheduled_start": _iso(booking.scheduled_start),
        "duration_minutes": booking.duration_minutes,
        "credits_reserved": booking.credits_reserved,
        "payee_payout": booking.payee_payout,
    }
    payload.update(extra)
    return payload


def withdrawn_payload(booking_id: UUID, withdrawn_at: datetime) -> dict[str, Any]:
    """Hint for a booking removed while it was being created."""
    return {
        "booking_id": str(booking_id),
        "status": "withdrawn",
        "both_joined_at": None,
        "updated_at": withdrawn_at.isoformat(),
    }
