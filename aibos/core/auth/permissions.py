"""Role to permission mapping and segregation-of-duties rules."""

from __future__ import annotations

from typing import Dict, FrozenSet

ROLE_ADMIN = "admin"
ROLE_CFO = "cfo"
ROLE_CONTROLLER = "controller"
ROLE_ACCOUNTANT = "accountant"
ROLE_CLERK = "clerk"
ROLE_VIEWER = "viewer"

ROLES = (ROLE_ADMIN, ROLE_CFO, ROLE_CONTROLLER, ROLE_ACCOUNTANT, ROLE_CLERK, ROLE_VIEWER)

JOURNAL_CREATE = "journal:create"
JOURNAL_POST = "journal:post"
JOURNAL_APPROVE = "journal:approve"
JOURNAL_REVERSE = "journal:reverse"
PERIOD_CLOSE = "period:close"
PERIOD_REOPEN = "period:reopen"
FX_MANAGE = "fx:manage"
ACCOUNT_MANAGE = "account:manage"
REPORT_VIEW = "report:view"
AUDIT_VIEW = "audit:view"
COMPANY_MANAGE = "company:manage"
DOCUMENT_CREATE = "document:create"
DOCUMENT_POST = "document:post"
PAYMENT_CREATE = "payment:create"

ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    {
        JOURNAL_CREATE,
        JOURNAL_POST,
        JOURNAL_APPROVE,
        JOURNAL_REVERSE,
        PERIOD_CLOSE,
        PERIOD_REOPEN,
        FX_MANAGE,
        ACCOUNT_MANAGE,
        REPORT_VIEW,
        AUDIT_VIEW,
        COMPANY_MANAGE,
        DOCUMENT_CREATE,
        DOCUMENT_POST,
        PAYMENT_CREATE,
    }
)

# Approvers never originate entries; that keeps the maker/checker split.
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_CFO: frozenset(
        {
            JOURNAL_APPROVE,
            JOURNAL_REVERSE,
            PERIOD_CLOSE,
            PERIOD_REOPEN,
            FX_MANAGE,
            REPORT_VIEW,
            AUDIT_VIEW,
            COMPANY_MANAGE,
        }
    ),
    ROLE_CONTROLLER: frozenset(
        {
            JOURNAL_APPROVE,
            JOURNAL_REVERSE,
            PERIOD_CLOSE,
            FX_MANAGE,
            ACCOUNT_MANAGE,
            REPORT_VIEW,
            AUDIT_VIEW,
        }
    ),
    ROLE_ACCOUNTANT: frozenset(
        {
            JOURNAL_CREATE,
            JOURNAL_POST,
            JOURNAL_REVERSE,
            ACCOUNT_MANAGE,
            REPORT_VIEW,
            DOCUMENT_CREATE,
            DOCUMENT_POST,
            PAYMENT_CREATE,
        }
    ),
    ROLE_CLERK: frozenset({JOURNAL_CREATE, REPORT_VIEW, DOCUMENT_CREATE, PAYMENT_CREATE}),
    ROLE_VIEWER: frozenset({REPORT_VIEW}),
}


def permissions_for(role: str | None) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: str | None, permission: str) -> bool:
    return permission in permissions_for(role)
