"""View decorator that deduplicates retried writes by Idempotency-Key."""

from __future__ import annotations

from functools import wraps
from typing import Callable, TypeVar

from flask import current_app, jsonify, request

from aibos.core.audit.services import record_audit
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.errors import error_response
from aibos.extensions import db
from aibos.platform.idempotency.services import begin, complete, fail, hash_request

F = TypeVar("F", bound=Callable)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replayed"


def idempotent(fn: F) -> F:
    """Apply after ``tenant_required``; requests without the header run normally."""

    @wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[misc]
        key = request.headers.get(IDEMPOTENCY_HEADER)
        if not key:
            return fn(*args, **kwargs)

        scope = current_scope()
        body = request.get_json(silent=True)
        fingerprint = hash_request(request.method, request.path, body if body is not None else request.get_data())
        try:
            stored = begin(scope.tenant_id, key, fingerprint)
        except ValueError as exc:
            return error_response(exc)

        key = key.strip()
        if stored is not None:
            record_audit(
                "idempotency.replayed",
                "idempotency_key",
                key,
                tenant_id=scope.tenant_id,
                user_id=scope.user_id,
                category="data_access",
                details={"path": request.path, "response_code": stored.response_code},
            )
            db.session.commit()
            response = jsonify(stored.response_body)
            response.status_code = stored.response_code or 200
            response.headers[REPLAY_HEADER] = "true"
            return response

        try:
            rv = fn(*args, **kwargs)
        except Exception:
            fail(scope.tenant_id, key)
            raise

        response = current_app.make_response(rv)
        if 200 <= response.status_code < 300:
            complete(scope.tenant_id, key, response.status_code, response.get_json(silent=True))
        else:
            fail(scope.tenant_id, key)
        return response

    return wrapper  # type: ignore[return-value]
