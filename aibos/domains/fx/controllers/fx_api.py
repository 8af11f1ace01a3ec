"""Currency and exchange-rate API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from aibos.core.auth.permissions import FX_MANAGE
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.money import to_decimal
from aibos.core.utils.validation import parse_bool_arg, parse_date_arg
from aibos.domains.fx.schemas.fx_schemas import (
    CurrencyResponse,
    ManualRateRequest,
    RefreshRatesRequest,
    serialize_rate,
)
from aibos.domains.fx.services.currency_service import list_currencies
from aibos.domains.fx.services.rate_service import (
    convert,
    get_rate,
    ingest_rates,
    list_rates,
    record_manual_rate,
)
from aibos.extensions import limiter

fx_api_bp = Blueprint("fx_api", __name__)


@fx_api_bp.get("/currencies")
@tenant_required
@limiter.limit("240/minute")
def list_currencies_endpoint():
    currencies = [CurrencyResponse.model_validate(c).model_dump() for c in list_currencies()]
    return jsonify({"ok": True, "currencies": currencies})


@fx_api_bp.get("/fx/rates")
@tenant_required
@limiter.limit("240/minute")
def get_rates():
    """Quote one pair when ``from``/``to`` are given, else list current rates."""
    scope = current_scope()
    from_code = request.args.get("from")
    to_code = request.args.get("to")
    try:
        if from_code and to_code:
            quote = get_rate(
                from_code,
                to_code,
                as_of=parse_date_arg(request.args.get("as_of"), "as_of"),
                allow_stale=parse_bool_arg(request.args.get("allow_stale")),
                tenant_id=scope.tenant_id,
            )
            return jsonify({"ok": True, "quote": quote.to_dict()})
        rows = list_rates(
            scope.tenant_id,
            from_currency=from_code,
            to_currency=to_code,
            current_only=not parse_bool_arg(request.args.get("history")),
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "rates": [serialize_rate(r) for r in rows]})


@fx_api_bp.post("/fx/rates")
@tenant_required
@csrf_protected
@require_permissions({FX_MANAGE})
@limiter.limit("60/minute")
def create_manual_rate():
    scope = current_scope()
    try:
        data = ManualRateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        row = record_manual_rate(scope, data.from_currency, data.to_currency, data.rate, data.valid_from)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "rate": serialize_rate(row)}), 201


@fx_api_bp.post("/fx/refresh")
@tenant_required
@csrf_protected
@require_permissions({FX_MANAGE})
@limiter.limit("6/minute")
def refresh_rates():
    try:
        data = RefreshRatesRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        result = ingest_rates(data.base, data.targets)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "result": result.to_dict()})


@fx_api_bp.get("/fx/convert")
@tenant_required
@limiter.limit("240/minute")
def convert_amount():
    scope = current_scope()
    try:
        amount = to_decimal(request.args.get("amount"))
        converted, quote = convert(
            amount,
            request.args.get("from", ""),
            request.args.get("to", ""),
            as_of=parse_date_arg(request.args.get("as_of"), "as_of"),
            allow_stale=parse_bool_arg(request.args.get("allow_stale")),
            tenant_id=scope.tenant_id,
        )
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "amount": str(amount), "converted": str(converted), "quote": quote.to_dict()})
