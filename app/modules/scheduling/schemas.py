"""Scheduling schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AvailabilityWindowWrite(BaseModel):
    """One weekly window; day_of_week 0 is Monday, times are UTC."""

    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True

    @model_validator(mode="after")
    def validate_bounds(self) -> "AvailabilityWindowWrite":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityReplace(BaseModel):
    """Replace the caller's weekly availability."""

    windows: list[AvailabilityWindowWrite] = Field(default_factory=list, max_length=64)


class AvailabilityWindowRead(BaseModel):
    """Availability window response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payee_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class RateWrite(BaseModel):
    """Price for one duration."""

    duration_minutes: int = Field(gt=0)
    credits: int = Field(gt=0)


class RatesReplace(BaseModel):
    """Replace the caller's rate card."""

    rates: list[RateWrite] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_durations(self) -> "RatesReplace":
        durations = [rate.duration_minutes for rate in self.rates]
        if len(durations) != len(set(durations)):
            raise ValueError("Each duration may be priced only once")
        return self


class RateRead(BaseModel):
    """Payee rate response schema."""

    model_config = ConfigDict(from_attributes=True)

    payee_id: UUID
    duration_minutes: int
    credits: int


class SlotsRead(BaseModel):
    """Legal starts of a payee on one day."""

    payee_id: UUID
    day: date
    duration_minutes: int
    starts: list[datetime]
