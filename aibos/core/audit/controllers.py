"""Audit log API."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from aibos.core.audit.services import list_entries, require_entry, serialize_entry, verify_chain
from aibos.core.auth.permissions import AUDIT_VIEW
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import require_permissions, tenant_required
from aibos.core.utils.errors import error_response
from aibos.core.utils.pagination import page_args, paginate
from aibos.core.utils.validation import parse_date_arg
from aibos.extensions import limiter

audit_api_bp = Blueprint("audit_api", __name__)


@audit_api_bp.get("/audit")
@tenant_required
@require_permissions({AUDIT_VIEW})
@limiter.limit("120/minute")
def list_audit_entries():
    scope = current_scope()
    try:
        query = list_entries(
            scope.tenant_id,
            resource=request.args.get("resource"),
            resource_id=request.args.get("resource_id"),
            action=request.args.get("action"),
            user_id=request.args.get("user_id", type=int),
            from_date=parse_date_arg(request.args.get("from"), "from"),
            to_date=parse_date_arg(request.args.get("to"), "to"),
        )
    except ValueError as exc:
        return error_response(exc)
    page, per_page = page_args(current_app.config.get("AUDIT_LOG_PAGE_SIZE", 50))
    result = paginate(query, page, per_page)
    return jsonify(
        {
            "ok": True,
            "entries": [serialize_entry(e) for e in result["items"]],
            "page": result["page"],
            "per_page": result["per_page"],
            "total": result["total"],
        }
    )


@audit_api_bp.get("/audit/verify")
@tenant_required
@require_permissions({AUDIT_VIEW})
@limiter.limit("10/minute")
def verify_audit_chain():
    scope = current_scope()
    return jsonify({"ok": True, **verify_chain(scope.tenant_id)})


@audit_api_bp.get("/audit/<int:entry_id>")
@tenant_required
@require_permissions({AUDIT_VIEW})
def get_audit_entry(entry_id: int):
    scope = current_scope()
    try:
        entry = require_entry(scope.tenant_id, entry_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "entry": serialize_entry(entry)})
