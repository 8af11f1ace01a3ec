"""Pydantic schemas for tenancy endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=64)


class CompanyCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=255)
    base_currency: str = Field(min_length=3, max_length=3)
    fiscal_year_end: str = Field(default="12-31", pattern=r"^\d{2}-\d{2}$")
    approval_threshold: Optional[Decimal] = Field(default=None, ge=0)
    seed_chart: bool = False


class CompanyPolicyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    approval_threshold: Optional[Decimal] = Field(default=None, ge=0)
    clear_threshold: bool = False


class MemberAddRequest(BaseModel):
    email: EmailStr
    role: Literal["admin", "cfo", "controller", "accountant", "clerk", "viewer"]
    company_id: Optional[int] = None


class CompanyResponse(BaseModel):
    id: int
    tenant_id: int
    code: str
    name: str
    base_currency: str
    fiscal_year_end: str
    approval_threshold: Optional[Decimal] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


def serialize_company(company) -> dict:
    return CompanyResponse.model_validate(company).model_dump(mode="json")
