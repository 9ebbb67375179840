"""Ledger schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import LedgerEntryTypeEnum


class BalanceRead(BaseModel):
    """Balance snapshot of one account."""

    account_id: UUID
    balance: int
    held: int
    available: int


class TopUpRequest(BaseModel):
    """Credit an account (admin)."""

    account_id: UUID
    amount: int = Field(gt=0)


class LedgerEntryRead(BaseModel):
    """Ledger entry response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    booking_id: UUID | None
    entry_type: LedgerEntryTypeEnum
    amount: int
    created_at: datetime
