"""Financial report API (read-only)."""

from __future__ import annotations

import datetime as dt

from flask import Blueprint, Response, jsonify, request

from aibos.core.auth.permissions import REPORT_VIEW
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import require_permissions, tenant_required
from aibos.core.utils.errors import DomainError, error_response
from aibos.core.utils.validation import parse_bool_arg, parse_date_arg
from aibos.domains.reports.services.statement_service import balance_sheet, cash_flow, profit_and_loss
from aibos.domains.reports.services.trial_balance_service import trial_balance, trial_balance_csv
from aibos.extensions import limiter

report_api_bp = Blueprint("report_api", __name__)


def _date_range() -> tuple[dt.date, dt.date]:
    start = parse_date_arg(request.args.get("start"), "start")
    end = parse_date_arg(request.args.get("end"), "end")
    if start is None or end is None:
        raise DomainError("validation_error", "start and end are required", {"fields": ["start", "end"]})
    return start, end


def _trial_balance_from_args():
    return trial_balance(
        current_scope(),
        as_of=parse_date_arg(request.args.get("as_of"), "as_of"),
        include_zero=parse_bool_arg(request.args.get("include_zero")),
        from_date=parse_date_arg(request.args.get("from_date"), "from_date"),
    )


@report_api_bp.get("/reports/trial-balance")
@tenant_required
@require_permissions({REPORT_VIEW})
@limiter.limit("60/minute")
def trial_balance_endpoint():
    try:
        report = _trial_balance_from_args()
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "report": report.to_dict()})


@report_api_bp.get("/reports/trial-balance.csv")
@tenant_required
@require_permissions({REPORT_VIEW})
@limiter.limit("30/minute")
def trial_balance_csv_endpoint():
    try:
        report = _trial_balance_from_args()
    except ValueError as exc:
        return error_response(exc)
    filename = f"trial_balance_{report.company_id}_{report.as_of.isoformat()}.csv"
    return Response(
        trial_balance_csv(report),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@report_api_bp.get("/reports/profit-loss")
@tenant_required
@require_permissions({REPORT_VIEW})
@limiter.limit("60/minute")
def profit_loss_endpoint():
    try:
        start, end = _date_range()
        report = profit_and_loss(
            current_scope(),
            start,
            end,
            compare_start=parse_date_arg(request.args.get("compare_start"), "compare_start"),
            compare_end=parse_date_arg(request.args.get("compare_end"), "compare_end"),
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "report": report})


@report_api_bp.get("/reports/balance-sheet")
@tenant_required
@require_permissions({REPORT_VIEW})
@limiter.limit("60/minute")
def balance_sheet_endpoint():
    try:
        report = balance_sheet(current_scope(), parse_date_arg(request.args.get("as_of"), "as_of"))
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "report": report})


@report_api_bp.get("/reports/cash-flow")
@tenant_required
@require_permissions({REPORT_VIEW})
@limiter.limit("60/minute")
def cash_flow_endpoint():
    try:
        start, end = _date_range()
        report = cash_flow(current_scope(), start, end)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "report": report})
