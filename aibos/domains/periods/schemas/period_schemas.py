"""Pydantic schemas for fiscal periods."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateYearRequest(BaseModel):
    fiscal_year: int = Field(ge=1900, le=2999)


class ClosePeriodRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
    force: bool = False
    generate_reversals: bool = False


class ReopenPeriodRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class LockPeriodRequest(BaseModel):
    lock_type: Literal["POSTING", "REPORTING", "FULL"]
    reason: Optional[str] = Field(default=None, max_length=1000)


class PeriodLockResponse(BaseModel):
    id: int
    period_id: int
    lock_type: str
    locked_by: int
    reason: Optional[str] = None
    is_active: bool
    locked_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PeriodResponse(BaseModel):
    id: int
    company_id: int
    fiscal_year: int
    period_number: int
    name: str
    start_date: date
    end_date: date
    status: str
    closed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    close_reason: Optional[str] = None
    locks: List[PeriodLockResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


def serialize_period(period) -> dict:
    data = PeriodResponse.model_validate(period).model_dump(mode="json")
    data["locks"] = [lock for lock in data["locks"] if lock["is_active"]]
    return data


def serialize_lock(lock) -> dict:
    return PeriodLockResponse.model_validate(lock).model_dump(mode="json")
