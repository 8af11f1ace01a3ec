"""Journal API: create, post, approve, reverse and browse journals."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError
from sqlalchemy.orm import selectinload

from aibos.core.auth.permissions import JOURNAL_APPROVE, JOURNAL_POST, JOURNAL_REVERSE
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.pagination import page_args, paginate
from aibos.core.utils.validation import parse_date_arg
from aibos.domains.ledger.models.ledger_models import Journal
from aibos.domains.ledger.schemas.ledger_schemas import (
    JournalCreateRequest,
    ReverseRequest,
    serialize_journal,
)
from aibos.domains.ledger.services.posting_service import (
    approve_journal,
    create_journal,
    get_journal,
    list_journals,
    post_journal,
    reverse_journal,
)
from aibos.extensions import limiter
from aibos.platform.idempotency import idempotent

journal_api_bp = Blueprint("ledger_journal_api", __name__)


@journal_api_bp.get("/journals")
@tenant_required
@limiter.limit("240/minute")
def list_journals_endpoint():
    scope = current_scope()
    page, per_page = page_args()
    try:
        account_id = request.args.get("account_id", type=int)
        query = list_journals(
            scope,
            status=request.args.get("status"),
            from_date=parse_date_arg(request.args.get("from"), "from"),
            to_date=parse_date_arg(request.args.get("to"), "to"),
            account_id=account_id,
        )
    except ValueError as exc:
        return error_response(exc)
    result = paginate(query.options(selectinload(Journal.lines)), page, per_page)
    return jsonify(
        {
            "ok": True,
            "journals": [serialize_journal(j, include_lines=False) for j in result["items"]],
            "page": result["page"],
            "per_page": result["per_page"],
            "total": result["total"],
        }
    )


@journal_api_bp.post("/journals")
@tenant_required
@csrf_protected
@idempotent
@limiter.limit("120/minute")
def create_journal_endpoint():
    """Create a draft; ``post: true`` also posts it in the same request."""
    scope = current_scope()
    try:
        data = JournalCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        journal = create_journal(scope, data.service_payload(), post=data.post)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "journal": serialize_journal(journal)}), 201


@journal_api_bp.get("/journals/<int:journal_id>")
@tenant_required
@limiter.limit("240/minute")
def get_journal_endpoint(journal_id: int):
    scope = current_scope()
    try:
        journal = get_journal(scope, journal_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "journal": serialize_journal(journal)})


@journal_api_bp.post("/journals/<int:journal_id>/post")
@tenant_required
@csrf_protected
@require_permissions({JOURNAL_POST})
@idempotent
@limiter.limit("120/minute")
def post_journal_endpoint(journal_id: int):
    scope = current_scope()
    try:
        journal = post_journal(scope, journal_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "journal": serialize_journal(journal)})


@journal_api_bp.post("/journals/<int:journal_id>/approve")
@tenant_required
@csrf_protected
@require_permissions({JOURNAL_APPROVE})
@limiter.limit("60/minute")
def approve_journal_endpoint(journal_id: int):
    scope = current_scope()
    try:
        journal = approve_journal(scope, journal_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "journal": serialize_journal(journal)})


@journal_api_bp.post("/journals/<int:journal_id>/reverse")
@tenant_required
@csrf_protected
@require_permissions({JOURNAL_REVERSE})
@idempotent
@limiter.limit("60/minute")
def reverse_journal_endpoint(journal_id: int):
    scope = current_scope()
    try:
        data = ReverseRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        reversal = reverse_journal(scope, journal_id, data.reversal_date, data.reason)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "reversal": serialize_journal(reversal)}), 201
