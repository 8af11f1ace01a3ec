"""Bank statement import and matching API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from aibos.core.auth.permissions import PAYMENT_CREATE
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.pagination import page_args, paginate
from aibos.domains.billing.schemas.billing_schemas import (
    BankConfirmRequest,
    BankMatchRequest,
    BankStatementImportRequest,
    serialize_statement,
)
from aibos.domains.billing.services.bank_import_service import get_statement, import_statement, list_transactions
from aibos.domains.billing.services.bank_match_service import (
    MatchConfig,
    auto_match,
    confirm_match,
    serialize_transaction,
)
from aibos.extensions import limiter

bank_api_bp = Blueprint("bank_api", __name__)


def _import_payload() -> dict:
    """JSON body, or a multipart upload with the CSV in ``file``."""
    upload = request.files.get("file")
    if upload is None:
        return request.get_json(silent=True) or {}
    payload = request.form.to_dict()
    payload["content"] = upload.read().decode("utf-8-sig", errors="replace")
    payload.setdefault("filename", upload.filename)
    return payload


@bank_api_bp.post("/bank/imports")
@tenant_required
@csrf_protected
@require_permissions({PAYMENT_CREATE})
@limiter.limit("20/minute")
def import_statement_endpoint():
    try:
        data = BankStatementImportRequest.model_validate(_import_payload())
    except ValidationError as exc:
        return validation_response(exc)
    try:
        statement = import_statement(
            current_scope(),
            data.bank_account_id,
            data.content,
            format_key=data.bank_format,
            filename=data.filename,
            skip_rows=data.skip_rows,
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "import": serialize_statement(statement)}), 201


@bank_api_bp.get("/bank/imports/<int:import_id>")
@tenant_required
@limiter.limit("240/minute")
def get_statement_endpoint(import_id: int):
    try:
        statement = get_statement(current_scope(), import_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify(
        {
            "ok": True,
            "import": serialize_statement(statement),
            "transactions": [serialize_transaction(t) for t in statement.transactions],
        }
    )


@bank_api_bp.post("/bank/imports/<int:import_id>/match")
@tenant_required
@csrf_protected
@require_permissions({PAYMENT_CREATE})
@limiter.limit("30/minute")
def auto_match_endpoint(import_id: int):
    try:
        data = BankMatchRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    config = MatchConfig(
        auto_match_threshold=data.auto_match_threshold,
        suggest_threshold=data.suggest_threshold,
        date_tolerance_days=data.date_tolerance_days,
    )
    try:
        result = auto_match(current_scope(), import_id, config)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, **result})


@bank_api_bp.get("/bank/transactions")
@tenant_required
@limiter.limit("240/minute")
def list_transactions_endpoint():
    try:
        query = list_transactions(
            current_scope(),
            import_id=request.args.get("import_id", type=int),
            status=request.args.get("status"),
        )
    except ValueError as exc:
        return error_response(exc)
    page, per_page = page_args()
    result = paginate(query, page, per_page)
    return jsonify(
        {
            "ok": True,
            "transactions": [serialize_transaction(t) for t in result["items"]],
            "page": result["page"],
            "per_page": result["per_page"],
            "total": result["total"],
        }
    )


@bank_api_bp.post("/bank/transactions/<int:transaction_id>/confirm")
@tenant_required
@csrf_protected
@require_permissions({PAYMENT_CREATE})
@limiter.limit("60/minute")
def confirm_match_endpoint(transaction_id: int):
    try:
        data = BankConfirmRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        transaction = confirm_match(current_scope(), transaction_id, data.match_type, data.match_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "transaction": serialize_transaction(transaction)})
