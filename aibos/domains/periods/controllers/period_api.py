"""Fiscal period API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from aibos.core.auth.permissions import PERIOD_CLOSE, PERIOD_REOPEN
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.validation import parse_date_arg
from aibos.domains.periods.schemas.period_schemas import (
    ClosePeriodRequest,
    GenerateYearRequest,
    LockPeriodRequest,
    ReopenPeriodRequest,
    serialize_lock,
    serialize_period,
)
from aibos.domains.periods.services.period_service import (
    close_period,
    find_period_for_date,
    generate_fiscal_year,
    get_period,
    list_periods,
    lock_period,
    reopen_period,
    validate_period_close,
)
from aibos.extensions import limiter

period_api_bp = Blueprint("period_api", __name__)


@period_api_bp.get("/periods")
@tenant_required
@limiter.limit("240/minute")
def list_periods_endpoint():
    scope = current_scope()
    try:
        on = parse_date_arg(request.args.get("date"), "date")
        if on is not None:
            period = find_period_for_date(scope, on)
            return jsonify({"ok": True, "period": serialize_period(period) if period else None})
        periods = list_periods(
            scope,
            fiscal_year=request.args.get("fiscal_year", type=int),
            status=request.args.get("status"),
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "periods": [serialize_period(p) for p in periods]})


@period_api_bp.post("/periods")
@tenant_required
@csrf_protected
@require_permissions({PERIOD_CLOSE})
@limiter.limit("10/minute")
def generate_periods_endpoint():
    scope = current_scope()
    try:
        data = GenerateYearRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        periods = generate_fiscal_year(scope, data.fiscal_year)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "periods": [serialize_period(p) for p in periods]}), 201


@period_api_bp.get("/periods/<int:period_id>")
@tenant_required
@limiter.limit("240/minute")
def get_period_endpoint(period_id: int):
    scope = current_scope()
    try:
        period = get_period(scope, period_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "period": serialize_period(period)})


@period_api_bp.get("/periods/<int:period_id>/close-check")
@tenant_required
@require_permissions({PERIOD_CLOSE})
@limiter.limit("60/minute")
def close_check_endpoint(period_id: int):
    scope = current_scope()
    try:
        validation = validate_period_close(scope, get_period(scope, period_id))
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "validation": validation.to_dict()})


@period_api_bp.post("/periods/<int:period_id>/close")
@tenant_required
@csrf_protected
@require_permissions({PERIOD_CLOSE})
@limiter.limit("20/minute")
def close_period_endpoint(period_id: int):
    scope = current_scope()
    try:
        data = ClosePeriodRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        result = close_period(
            scope,
            period_id,
            reason=data.reason,
            force=data.force,
            generate_reversals=data.generate_reversals,
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify(
        {
            "ok": True,
            "period": serialize_period(result.period),
            "forced": result.forced,
            "next_period_id": result.next_period_id,
            "reversals_created": len(result.reversal_ids),
            "reversal_ids": result.reversal_ids,
            "warnings": result.validation.warnings,
        }
    )


@period_api_bp.post("/periods/<int:period_id>/reopen")
@tenant_required
@csrf_protected
@require_permissions({PERIOD_REOPEN})
@limiter.limit("20/minute")
def reopen_period_endpoint(period_id: int):
    scope = current_scope()
    try:
        data = ReopenPeriodRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        period = reopen_period(scope, period_id, data.reason)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "period": serialize_period(period)})


@period_api_bp.post("/periods/<int:period_id>/lock")
@tenant_required
@csrf_protected
@require_permissions({PERIOD_CLOSE})
@limiter.limit("20/minute")
def lock_period_endpoint(period_id: int):
    scope = current_scope()
    try:
        data = LockPeriodRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        lock = lock_period(scope, period_id, data.lock_type, data.reason)
        period = get_period(scope, period_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "lock": serialize_lock(lock), "period": serialize_period(period)}), 201
