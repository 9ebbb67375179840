"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import BookingStatusEnum


class BookingCreateRequest(BaseModel):
    """Book a session with a payee."""

    payee_id: UUID
    scheduled_start: datetime
    duration_minutes: int = Field(gt=0)


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=512)


class BookingRead(BaseModel):
    """Booking response schema; room tokens are only handed out on join."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payer_id: UUID
    payee_id: UUID
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    credits_reserved: int
    payee_payout: int
    platform_fee: int
    status: BookingStatusEnum
    room_url: str | None
    payer_joined_at: datetime | None
    payee_joined_at: datetime | None
    both_joined_at: datetime | None
    actual_start: datetime | None
    actual_end: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    settled_at: datetime | None
    created_at: datetime
    updated_at: datetime
