"""Request-level tenant scope derived from the access token."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import g

from aibos.core.auth.permissions import has_permission
from aibos.core.utils.errors import DomainError


@dataclass(frozen=True)
class TenantScope:
    """Identity plus the tenant/company every query must be filtered by."""

    user_id: int
    tenant_id: int
    company_id: Optional[int]
    role: str

    def can(self, permission: str) -> bool:
        return has_permission(self.role, permission)

    def require(self, permission: str) -> None:
        if not self.can(permission):
            raise DomainError(
                "forbidden",
                f"Role '{self.role}' lacks permission '{permission}'",
                {"permission": permission},
            )

    def require_company(self) -> int:
        if self.company_id is None:
            raise DomainError("company_required", "Select a company before using this endpoint")
        return self.company_id


def current_scope() -> TenantScope:
    scope = getattr(g, "tenant_scope", None)
    if scope is None:
        raise DomainError("tenant_required", "No tenant context on this request")
    return scope
