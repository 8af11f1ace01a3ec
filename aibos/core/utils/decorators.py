"""Reusable decorators for controllers/services."""

from __future__ import annotations

from functools import wraps
from typing import Callable, Iterable, TypeVar

from flask import current_app, g, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, get_jwt_request_location, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from aibos.core.auth.csrf import validate_csrf_token
from aibos.core.auth.permissions import has_permission
from aibos.core.tenancy.scope import TenantScope

F = TypeVar("F", bound=Callable)


def tenant_required(fn: F) -> F:
    """Verify the JWT and bind the tenant scope it carries to ``g``."""

    @wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[misc]
        try:
            verify_jwt_in_request()
        except (JWTExtendedException, PyJWTError):
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        claims = get_jwt() or {}
        tenant_id = claims.get("tenant_id")
        if tenant_id is None:
            return jsonify({"ok": False, "error": "tenant_required"}), 403

        from aibos.core.tenancy.services import membership_for

        user_id = int(get_jwt_identity())
        membership = membership_for(user_id, int(tenant_id), claims.get("company_id"))
        if membership is None:
            return jsonify({"ok": False, "error": "forbidden"}), 403

        g.tenant_scope = TenantScope(
            user_id=user_id,
            tenant_id=int(tenant_id),
            company_id=claims.get("company_id"),
            role=membership.role,
        )
        return fn(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def require_permissions(required: Iterable[str]):
    """Enforce that the scoped role grants every listed permission."""

    def decorator(fn: F) -> F:
        @wraps(fn)
        def wrapper(*args, **kwargs):  # type: ignore[misc]
            scope = getattr(g, "tenant_scope", None)
            if scope is None:
                return jsonify({"ok": False, "error": "tenant_required"}), 403
            missing = sorted(p for p in required if not has_permission(scope.role, p))
            if missing:
                return (
                    jsonify({"ok": False, "error": "forbidden", "details": {"missing": missing}}),
                    403,
                )
            return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def csrf_protected(fn: F) -> F:
    """Validate CSRF token from header X-CSRF-Token.

    Only requests whose JWT came from a cookie are checked; bearer tokens in
    the Authorization header pass. Must sit below the decorator that verifies
    the JWT.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[misc]
        if not current_app.config.get("WTF_CSRF_ENABLED", True):
            return fn(*args, **kwargs)
        if get_jwt_request_location() == "headers":
            return fn(*args, **kwargs)
        token = request.headers.get("X-CSRF-Token")
        if not validate_csrf_token(token or ""):
            return jsonify({"ok": False, "error": "csrf_failed"}), 403
        return fn(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
