"""Domain error type and HTTP mapping shared by controllers."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import jsonify

# Status codes for error codes raised by services. Unlisted codes map to 400.
ERROR_STATUS: Dict[str, int] = {
    "unauthorized": 401,
    "invalid_credentials": 401,
    "forbidden": 403,
    "sod_violation": 403,
    "tenant_required": 403,
    "company_required": 403,
    "not_found": 404,
    "journal_not_found": 404,
    "period_not_found": 404,
    "company_not_found": 404,
    "document_not_found": 404,
    "rate_not_found": 422,
    "email_already_exists": 409,
    "slug_taken": 409,
    "duplicate_journal_number": 409,
    "duplicate_account_code": 409,
    "duplicate_company_code": 409,
    "journal_not_editable": 409,
    "journal_not_pending": 409,
    "journal_not_posted": 409,
    "already_reversed": 409,
    "period_closed": 409,
    "period_already_closed": 409,
    "period_already_open": 409,
    "period_locked": 409,
    "period_not_closed": 409,
    "periods_exist": 409,
    "account_has_balance": 409,
    "document_not_editable": 409,
    "document_not_payable": 409,
    "duplicate_document_number": 409,
    "idempotency_in_progress": 409,
    "idempotency_key_reused": 422,
    "period_close_validation_failed": 422,
    "stale_rate": 422,
    "overpayment": 422,
    "allocation_mismatch": 422,
    "currency_mismatch": 422,
    "match_mismatch": 422,
    "amount_out_of_range": 422,
    "transaction_already_matched": 409,
    "payment_already_matched": 409,
    "account_not_found": 404,
    "fx_providers_unavailable": 503,
}


class DomainError(ValueError):
    """A business rule violation carrying a stable error code.

    ``str(exc)`` is the code so callers written against plain ``ValueError``
    codes keep working.
    """

    def __init__(
        self,
        code: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(code)
        self.code = code
        self.message = message or code.replace("_", " ").capitalize()
        self.details = details or {}
        self.status_code = status_code or ERROR_STATUS.get(code, 400)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


def error_response(exc: ValueError):
    """Translate a service ValueError into a JSON error response tuple."""
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.status_code
    code = str(exc) or "validation_error"
    return jsonify({"ok": False, "error": code}), ERROR_STATUS.get(code, 400)


def jsonable_errors(exc) -> list[dict]:
    """Pydantic errors with ctx values coerced to strings for JSON output."""
    errors = exc.errors()
    for err in errors:
        if "ctx" in err and isinstance(err["ctx"], dict):
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        err.pop("url", None)
        if "input" in err and not isinstance(err["input"], (str, int, float, bool, type(None))):
            err["input"] = str(err["input"])
    return errors


def validation_response(exc):
    return (
        jsonify({"ok": False, "error": "validation_error", "details": jsonable_errors(exc)}),
        400,
    )
