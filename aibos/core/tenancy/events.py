"""Tenancy event catalog."""

from __future__ import annotations

TENANCY_TENANT_CREATED = "tenancy.tenant.created"
TENANCY_COMPANY_CREATED = "tenancy.company.created"
TENANCY_COMPANY_UPDATED = "tenancy.company.updated"
TENANCY_MEMBER_ADDED = "tenancy.member.added"

EVENT_CATALOG = {
    TENANCY_TENANT_CREATED: {
        "version": "v1",
        "payload": {"tenant_id": "int", "name": "str", "owner_user_id": "int"},
    },
    TENANCY_COMPANY_CREATED: {
        "version": "v1",
        "payload": {"company_id": "int", "tenant_id": "int", "code": "str", "base_currency": "str"},
    },
    TENANCY_COMPANY_UPDATED: {
        "version": "v1",
        "payload": {"company_id": "int", "tenant_id": "int", "changes": "dict"},
    },
    TENANCY_MEMBER_ADDED: {
        "version": "v1",
        "payload": {"tenant_id": "int", "user_id": "int", "company_id": "int?", "role": "str"},
    },
}
