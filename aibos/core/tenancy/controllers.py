"""Tenant, company and membership API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from pydantic import ValidationError

from aibos.core.auth.auth_service import issue_tokens
from aibos.core.auth.permissions import COMPANY_MANAGE
from aibos.core.tenancy.schemas import (
    CompanyCreateRequest,
    CompanyPolicyUpdate,
    MemberAddRequest,
    TenantCreateRequest,
    serialize_company,
)
from aibos.core.tenancy.scope import current_scope
from aibos.core.tenancy.services import (
    add_member,
    create_company,
    create_tenant,
    get_company,
    list_companies,
    resolve_scope,
    update_company_policy,
)
from aibos.core.users.services import get_user
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.extensions import limiter

tenancy_bp = Blueprint("tenancy_api", __name__)


@tenancy_bp.post("/tenants")
@jwt_required()
@csrf_protected
@limiter.limit("10/minute")
def create_tenant_endpoint():
    """Any signed-in user may open a tenant; the response carries tokens scoped to it."""
    user = get_user(int(get_jwt_identity()))
    if user is None:
        return jsonify({"ok": False, "error": "unauthorized"}), 401
    try:
        data = TenantCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        tenant = create_tenant(user, data.name, data.slug)
        claims = resolve_scope(user, tenant.id)
    except ValueError as exc:
        return error_response(exc)
    tokens = issue_tokens(user, claims)
    return (
        jsonify(
            {
                "ok": True,
                "tenant": {"id": tenant.id, "name": tenant.name, "slug": tenant.slug},
                "scope": claims,
                **tokens,
            }
        ),
        201,
    )


@tenancy_bp.get("/companies")
@tenant_required
def list_companies_endpoint():
    scope = current_scope()
    return jsonify({"ok": True, "companies": [serialize_company(c) for c in list_companies(scope)]})


@tenancy_bp.post("/companies")
@tenant_required
@csrf_protected
@require_permissions({COMPANY_MANAGE})
@limiter.limit("30/minute")
def create_company_endpoint():
    from aibos.domains.ledger.services.account_service import seed_default_chart

    scope = current_scope()
    try:
        data = CompanyCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        company = create_company(
            scope,
            code=data.code,
            name=data.name,
            base_currency=data.base_currency,
            fiscal_year_end=data.fiscal_year_end,
            approval_threshold=data.approval_threshold,
        )
        seeded = len(seed_default_chart(scope, company.id)) if data.seed_chart else 0
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "company": serialize_company(company), "accounts_seeded": seeded}), 201


@tenancy_bp.get("/companies/<int:company_id>")
@tenant_required
def get_company_endpoint(company_id: int):
    scope = current_scope()
    try:
        company = get_company(scope, company_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "company": serialize_company(company)})


@tenancy_bp.patch("/companies/<int:company_id>")
@tenant_required
@csrf_protected
@require_permissions({COMPANY_MANAGE})
def update_company_endpoint(company_id: int):
    scope = current_scope()
    try:
        data = CompanyPolicyUpdate.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        company = update_company_policy(
            scope,
            company_id,
            approval_threshold=data.approval_threshold,
            clear_threshold=data.clear_threshold,
            name=data.name,
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "company": serialize_company(company)})


@tenancy_bp.post("/members")
@tenant_required
@csrf_protected
@require_permissions({COMPANY_MANAGE})
@limiter.limit("30/minute")
def add_member_endpoint():
    scope = current_scope()
    try:
        data = MemberAddRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        membership = add_member(scope, data.email, data.role, company_id=data.company_id)
    except ValueError as exc:
        return error_response(exc)
    return (
        jsonify(
            {
                "ok": True,
                "membership": {
                    "id": membership.id,
                    "user_id": membership.user_id,
                    "tenant_id": membership.tenant_id,
                    "company_id": membership.company_id,
                    "role": membership.role,
                },
            }
        ),
        201,
    )
