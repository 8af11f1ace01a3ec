"""Tenant, company and membership services."""

from __future__ import annotations

import calendar
import logging
import re
from decimal import Decimal
from typing import List, Optional

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import COMPANY_MANAGE, ROLE_ADMIN, ROLES
from aibos.core.tenancy.events import (
    TENANCY_COMPANY_CREATED,
    TENANCY_COMPANY_UPDATED,
    TENANCY_MEMBER_ADDED,
    TENANCY_TENANT_CREATED,
)
from aibos.core.tenancy.models import Company, Membership, Tenant
from aibos.core.tenancy.scope import TenantScope
from aibos.core.users.models import User
from aibos.core.users.services import find_user_by_email
from aibos.core.utils.errors import DomainError
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

_FISCAL_YEAR_END = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug[:48] or "tenant"


def _unique_slug(name: str) -> str:
    base = _slugify(name)
    slug = base
    suffix = 1
    while Tenant.query.filter_by(slug=slug).first() is not None:
        suffix += 1
        slug = f"{base}-{suffix}"
    return slug


def create_tenant(user: User, name: str, slug: Optional[str] = None) -> Tenant:
    """Create a tenant and make ``user`` its tenant-wide admin."""
    name = (name or "").strip()
    if not name:
        raise DomainError("validation_error", "Tenant name is required", {"field": "name"})
    if slug:
        slug = _slugify(slug)
        if Tenant.query.filter_by(slug=slug).first() is not None:
            raise DomainError("slug_taken", f"Tenant slug '{slug}' is already in use")
    else:
        slug = _unique_slug(name)
    tenant = Tenant(name=name, slug=slug, feature_flags={})
    db.session.add(tenant)
    db.session.flush()
    db.session.add(Membership(user_id=user.id, tenant_id=tenant.id, company_id=None, role=ROLE_ADMIN))
    enqueue_outbox(
        TENANCY_TENANT_CREATED,
        {"tenant_id": tenant.id, "name": tenant.name, "owner_user_id": user.id},
        user_id=user.id,
        tenant_id=tenant.id,
    )
    record_audit(
        "tenant.created",
        "tenant",
        tenant.id,
        tenant_id=tenant.id,
        user_id=user.id,
        category="system",
        details={"name": tenant.name, "slug": tenant.slug},
    )
    db.session.commit()
    logger.info("Created tenant %s (%s)", tenant.id, tenant.slug)
    return tenant


def validate_fiscal_year_end(value: str) -> str:
    """Fiscal years end on the last day of a month (February ends on the 28th)."""
    match = _FISCAL_YEAR_END.match(value or "")
    if not match or int(match.group(2)) != calendar.monthrange(2001, int(match.group(1)))[1]:
        raise DomainError(
            "validation_error",
            "fiscal_year_end must be a month end in MM-DD form",
            {"field": "fiscal_year_end", "value": value},
        )
    return value


def create_company(
    scope: TenantScope,
    code: str,
    name: str,
    base_currency: str,
    fiscal_year_end: str = "12-31",
    approval_threshold: Optional[Decimal] = None,
) -> Company:
    from aibos.domains.fx.services.currency_service import require_currency

    scope.require(COMPANY_MANAGE)
    code = code.strip().upper()
    require_currency(base_currency)
    validate_fiscal_year_end(fiscal_year_end)
    if Company.query.filter_by(tenant_id=scope.tenant_id, code=code).first():
        raise DomainError("duplicate_company_code", f"Company code '{code}' already exists")

    company = Company(
        tenant_id=scope.tenant_id,
        code=code,
        name=name.strip(),
        base_currency=base_currency.upper(),
        fiscal_year_end=fiscal_year_end,
        approval_threshold=approval_threshold,
    )
    db.session.add(company)
    db.session.flush()
    enqueue_outbox(
        TENANCY_COMPANY_CREATED,
        {
            "company_id": company.id,
            "tenant_id": scope.tenant_id,
            "code": company.code,
            "base_currency": company.base_currency,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "company.created",
        "company",
        company.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="system",
        details={"code": company.code, "base_currency": company.base_currency},
    )
    db.session.commit()
    return company


def get_company(scope: TenantScope, company_id: int) -> Company:
    company = Company.query.filter_by(id=company_id, tenant_id=scope.tenant_id).first()
    if company is None:
        raise DomainError("company_not_found", "Company not found")
    return company


def current_company(scope: TenantScope) -> Company:
    return get_company(scope, scope.require_company())


def lock_company(company_id: int) -> Company:
    """Take a row lock on the company until the transaction ends.

    Document numbering runs under this lock so two writers cannot read the
    same highest number. SQLite ignores ``FOR UPDATE``; it serializes writers
    on its own.
    """
    return Company.query.filter_by(id=company_id).with_for_update().one()


def list_companies(scope: TenantScope) -> List[Company]:
    return Company.query.filter_by(tenant_id=scope.tenant_id).order_by(Company.code).all()


def update_company_policy(
    scope: TenantScope,
    company_id: int,
    approval_threshold: Optional[Decimal] = None,
    clear_threshold: bool = False,
    name: Optional[str] = None,
) -> Company:
    """Change approval policy/display name. Base currency and fiscal year end are fixed once set."""
    scope.require(COMPANY_MANAGE)
    company = get_company(scope, company_id)
    changes = {}
    if clear_threshold:
        company.approval_threshold = None
        changes["approval_threshold"] = None
    elif approval_threshold is not None:
        if approval_threshold < 0:
            raise DomainError("validation_error", "approval_threshold must be positive")
        company.approval_threshold = approval_threshold
        changes["approval_threshold"] = str(approval_threshold)
    if name:
        company.name = name.strip()
        changes["name"] = company.name

    enqueue_outbox(
        TENANCY_COMPANY_UPDATED,
        {"company_id": company.id, "tenant_id": scope.tenant_id, "changes": changes},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "company.policy_updated",
        "company",
        company.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="system",
        severity="medium",
        details=changes,
    )
    db.session.commit()
    return company


def add_member(scope: TenantScope, email: str, role: str, company_id: Optional[int] = None) -> Membership:
    scope.require(COMPANY_MANAGE)
    if role not in ROLES:
        raise DomainError("validation_error", f"Unknown role '{role}'", {"field": "role"})
    user = find_user_by_email(email)
    if user is None:
        raise DomainError("not_found", "No user with that email")
    if company_id is not None:
        get_company(scope, company_id)

    existing = Membership.query.filter_by(
        user_id=user.id, tenant_id=scope.tenant_id, company_id=company_id
    ).first()
    if existing:
        existing.role = role
        membership = existing
    else:
        membership = Membership(user_id=user.id, tenant_id=scope.tenant_id, company_id=company_id, role=role)
        db.session.add(membership)
    db.session.flush()

    enqueue_outbox(
        TENANCY_MEMBER_ADDED,
        {"tenant_id": scope.tenant_id, "user_id": user.id, "company_id": company_id, "role": role},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "membership.granted",
        "membership",
        membership.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="authorization",
        severity="medium",
        details={"member_user_id": user.id, "role": role, "company_id": company_id},
    )
    db.session.commit()
    return membership


def membership_for(user_id: int, tenant_id: int, company_id: Optional[int]) -> Optional[Membership]:
    """Company-specific membership wins over a tenant-wide one."""
    if company_id is not None:
        exact = Membership.query.filter_by(user_id=user_id, tenant_id=tenant_id, company_id=company_id).first()
        if exact is not None:
            return exact
    return Membership.query.filter_by(user_id=user_id, tenant_id=tenant_id, company_id=None).first()


def resolve_scope(
    user: User,
    tenant_id: Optional[int] = None,
    company_id: Optional[int] = None,
) -> Optional[dict]:
    """Pick the token claims (tenant, company, role) for a user.

    Returns None when the user has no membership at all. Raises ``forbidden``
    when an explicitly requested tenant/company is not accessible.
    """
    query = Membership.query.filter_by(user_id=user.id)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    memberships = query.order_by(Membership.id).all()
    if not memberships:
        if tenant_id is not None:
            raise DomainError("forbidden", "No access to that tenant")
        return None

    chosen_tenant = memberships[0].tenant_id
    if company_id is not None:
        company = db.session.get(Company, company_id)
        if company is None or (tenant_id is not None and company.tenant_id != tenant_id):
            raise DomainError("forbidden", "No access to that company")
        chosen_tenant = company.tenant_id
        membership = membership_for(user.id, chosen_tenant, company_id)
        if membership is None:
            raise DomainError("forbidden", "No access to that company")
        return {"tenant_id": chosen_tenant, "company_id": company_id, "role": membership.role}

    membership = memberships[0]
    resolved_company = membership.company_id
    if resolved_company is None:
        first = Company.query.filter_by(tenant_id=chosen_tenant).order_by(Company.id).first()
        resolved_company = first.id if first else None
    return {"tenant_id": chosen_tenant, "company_id": resolved_company, "role": membership.role}
