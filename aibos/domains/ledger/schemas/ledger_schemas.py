"""Pydantic schemas for accounts and journals."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=255)
    account_type: str
    account_subtype: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    parent_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    allow_posting: bool = True
    normal_balance: Optional[Literal["DEBIT", "CREDIT"]] = None

    @field_validator("account_type")
    @classmethod
    def upper_type(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("normal_balance", mode="before")
    @classmethod
    def upper_balance(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class AccountResponse(BaseModel):
    id: int
    code: str
    name: str
    account_type: str
    account_subtype: str
    normal_balance: str
    currency: Optional[str] = None
    parent_id: Optional[int] = None
    description: Optional[str] = None
    is_active: bool
    allow_posting: bool

    model_config = ConfigDict(from_attributes=True)


class JournalLineInput(BaseModel):
    # Amount signs and sides are checked by the posting service so that each
    # rule keeps its own error code.
    account_id: int
    debit: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    dc: Optional[Literal["D", "C", "d", "c"]] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, max_length=512)
    reference: Optional[str] = Field(default=None, max_length=128)


class JournalCreateRequest(BaseModel):
    journal_date: Optional[date] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=512)
    reference: Optional[str] = Field(default=None, max_length=128)
    journal_number: Optional[str] = Field(default=None, max_length=40)
    exchange_rate: Optional[Decimal] = None
    allow_stale_rate: bool = False
    auto_reverse: bool = False
    post: bool = False
    lines: List[JournalLineInput] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    def service_payload(self) -> dict:
        payload = self.model_dump(exclude={"post"})
        payload["lines"] = [line.model_dump(exclude_none=True) for line in self.lines]
        return payload


class ReverseRequest(BaseModel):
    reversal_date: Optional[date] = None
    reason: Optional[str] = Field(default=None, max_length=512)


class JournalLineResponse(BaseModel):
    id: int
    line_number: int
    account_id: int
    debit: Decimal
    credit: Decimal
    base_debit: Decimal
    base_credit: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class JournalResponse(BaseModel):
    id: int
    company_id: int
    journal_number: str
    description: Optional[str] = None
    reference: Optional[str] = None
    source: str
    journal_date: date
    currency: str
    exchange_rate: Decimal
    rate_source: Optional[str] = None
    total_debit: Decimal
    total_credit: Decimal
    base_total_debit: Decimal
    base_total_credit: Decimal
    status: str
    auto_reverse: bool
    reversal_of_id: Optional[int] = None
    created_by: int
    approved_by: Optional[int] = None
    posted_by: Optional[int] = None
    posted_at: Optional[datetime] = None
    created_at: datetime
    lines: List[JournalLineResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


def serialize_account(account) -> dict:
    return AccountResponse.model_validate(account).model_dump(mode="json")


def serialize_journal(journal, include_lines: bool = True) -> dict:
    data = JournalResponse.model_validate(journal).model_dump(mode="json")
    if not include_lines:
        data.pop("lines", None)
    return data
