"""Typed schemas for user IO."""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from aibos.core.users.models import User


class LoginRequest(BaseModel):
    email: str
    password: str
    tenant_id: Optional[int] = None
    company_id: Optional[int] = None


class MembershipResponse(BaseModel):
    tenant_id: int
    tenant_name: str
    company_id: Optional[int] = None
    company_name: Optional[str] = None
    role: str


class UserResponse(BaseModel):
    # Response should not re-validate persisted emails
    id: int
    email: str
    full_name: Optional[str] = None
    is_active: bool
    memberships: List[MembershipResponse] = []

    model_config = ConfigDict(from_attributes=True)


def serialize_user(user: "User") -> UserResponse:
    memberships = [
        MembershipResponse(
            tenant_id=m.tenant_id,
            tenant_name=m.tenant.name if m.tenant else "",
            company_id=m.company_id,
            company_name=m.company.name if m.company else None,
            role=m.role,
        )
        for m in user.memberships
    ]
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        is_active=bool(user.is_active),
        memberships=memberships,
    )
