"""Session schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import BookingStatusEnum


class JoinTicket(BaseModel):
    """Everything a participant needs to enter the room."""

    booking_id: UUID
    role: Literal["payer", "payee"]
    status: BookingStatusEnum
    room_url: str
    token: str
    scheduled_start: datetime
    duration_minutes: int
    grace_deadline: datetime
    end_deadline: datetime


class SweepResult(BaseModel):
    """Outcome of one sweeper pass."""

    no_shows_cancelled: int
    sessions_completed: int
