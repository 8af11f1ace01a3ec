"""Chart of accounts API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from aibos.core.auth.permissions import ACCOUNT_MANAGE
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.validation import parse_bool_arg
from aibos.domains.ledger.schemas.ledger_schemas import AccountCreateRequest, serialize_account
from aibos.domains.ledger.services.account_service import (
    create_account,
    deactivate_account,
    get_account,
    list_accounts,
    search_accounts,
    seed_default_chart,
)
from aibos.extensions import limiter

account_api_bp = Blueprint("ledger_account_api", __name__)


@account_api_bp.get("/accounts")
@tenant_required
@limiter.limit("240/minute")
def list_accounts_endpoint():
    scope = current_scope()
    active = request.args.get("active")
    try:
        accounts = list_accounts(
            scope,
            account_type=request.args.get("type"),
            subtype=request.args.get("subtype"),
            active=parse_bool_arg(active) if active is not None else None,
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "accounts": [serialize_account(a) for a in accounts]})


@account_api_bp.get("/accounts/search")
@tenant_required
@limiter.limit("240/minute")
def search_accounts_endpoint():
    scope = current_scope()
    try:
        limit = int(request.args.get("limit", 20))
    except (TypeError, ValueError):
        limit = 20
    try:
        accounts = search_accounts(scope, request.args.get("q", ""), limit=limit)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "results": [serialize_account(a) for a in accounts]})


@account_api_bp.post("/accounts")
@tenant_required
@csrf_protected
@require_permissions({ACCOUNT_MANAGE})
@limiter.limit("60/minute")
def create_account_endpoint():
    scope = current_scope()
    try:
        data = AccountCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        account = create_account(scope, **data.model_dump())
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "account": serialize_account(account)}), 201


@account_api_bp.post("/accounts/seed")
@tenant_required
@csrf_protected
@require_permissions({ACCOUNT_MANAGE})
@limiter.limit("10/minute")
def seed_chart_endpoint():
    scope = current_scope()
    try:
        created = seed_default_chart(scope)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "created": [serialize_account(a) for a in created]}), 201


@account_api_bp.get("/accounts/<int:account_id>")
@tenant_required
@limiter.limit("240/minute")
def get_account_endpoint(account_id: int):
    scope = current_scope()
    try:
        account = get_account(scope, account_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "account": serialize_account(account)})


@account_api_bp.post("/accounts/<int:account_id>/deactivate")
@tenant_required
@csrf_protected
@require_permissions({ACCOUNT_MANAGE})
@limiter.limit("60/minute")
def deactivate_account_endpoint(account_id: int):
    scope = current_scope()
    try:
        account = deactivate_account(scope, account_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "account": serialize_account(account)})
