"""Audit schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import OutboxStatusEnum


class AuditLogRead(BaseModel):
    """Privileged or money-moving action, newest first in listings."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID | None
    action: str
    entity_type: str
    entity_id: str | None
    payload: dict
    created_at: datetime


class BookingEventRead(BaseModel):
    """Lifecycle event of one booking with its notification delivery state."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    booking_id: str = Field(validation_alias="aggregate_id")
    event_type: str
    payload: dict
    delivery_status: OutboxStatusEnum = Field(validation_alias="status")
    occurred_at: datetime
    delivered_at: datetime | None = Field(default=None, validation_alias="processed_at")
    delivery_attempts_failed: int = Field(default=0, validation_alias="retries")
    last_error: str | None = Field(default=None, validation_alias="error_message")
