"""Pydantic schemas for currency and FX endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CurrencyResponse(BaseModel):
    code: str
    name: str
    symbol: Optional[str] = None
    decimal_places: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ManualRateRequest(BaseModel):
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)
    valid_from: Optional[datetime] = None

    @field_validator("from_currency", "to_currency")
    @classmethod
    def upper(cls, v: str) -> str:
        return v.upper()


class RefreshRatesRequest(BaseModel):
    base: str = Field(min_length=3, max_length=3)
    targets: List[str] = Field(min_length=1, max_length=50)

    @field_validator("base")
    @classmethod
    def upper_base(cls, v: str) -> str:
        return v.upper()

    @field_validator("targets")
    @classmethod
    def upper_targets(cls, v: List[str]) -> List[str]:
        return [code.strip().upper() for code in v if code.strip()]


class FxRateResponse(BaseModel):
    id: int
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    provider: Optional[str] = None
    valid_from: datetime
    valid_to: Optional[datetime] = None
    fetched_at: datetime
    tenant_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


def serialize_rate(row) -> dict:
    return FxRateResponse.model_validate(row).model_dump(mode="json")
