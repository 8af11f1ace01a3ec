"""Auth HTTP controllers (API only)."""

from __future__ import annotations

from flask import Blueprint, jsonify, request, session
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from pydantic import ValidationError

from aibos.core.auth.auth_service import (
    login,
    refresh_access_token,
    register_user,
    revoke_refresh_token,
    switch_company,
)
from aibos.core.auth.csrf import generate_csrf_token, rotate_csrf_token
from aibos.core.auth.schemas import RegisterRequest, SwitchCompanyRequest
from aibos.core.users.schemas import LoginRequest, serialize_user
from aibos.core.users.services import get_user
from aibos.core.utils.decorators import csrf_protected
from aibos.core.utils.errors import error_response, validation_response
from aibos.extensions import limiter

auth_bp = Blueprint("auth_api", __name__)


def _token_response(result: dict, status: int = 200):
    return (
        jsonify(
            {
                "ok": True,
                "access_token": result["access_token"],
                "refresh_token": result.get("refresh_token"),
                "csrf_token": rotate_csrf_token(),
                "scope": result.get("claims") or {},
                "user": serialize_user(result["user"]).model_dump(),
            }
        ),
        status,
    )


@auth_bp.post("/register")
@limiter.limit("5/minute")
def register():
    payload = request.get_json(silent=True) or {}
    try:
        data = RegisterRequest.model_validate(payload)
    except ValidationError as exc:
        return validation_response(exc)
    try:
        result = register_user(data)
    except ValueError as exc:
        return error_response(exc)
    return _token_response(result, 201)


@auth_bp.post("/login")
@limiter.limit("10/minute")
def login_endpoint():
    # Ensure login is stateless even if a stale Flask session cookie is present.
    session.clear()
    payload = request.get_json(silent=True) or {}
    try:
        data = LoginRequest.model_validate(payload)
    except ValidationError as exc:
        return validation_response(exc)
    try:
        result = login(data.email, data.password, tenant_id=data.tenant_id, company_id=data.company_id)
    except ValueError as exc:
        return error_response(exc)
    return _token_response(result)


@auth_bp.post("/refresh")
@jwt_required(refresh=True)
@limiter.limit("30/minute")
def refresh():
    try:
        result = refresh_access_token(int(get_jwt_identity()), get_jwt())
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "access_token": result["access_token"], "scope": result["claims"]})


@auth_bp.post("/logout")
@jwt_required(refresh=True)
@csrf_protected
def logout():
    jti = get_jwt().get("jti")
    if jti:
        revoke_refresh_token(jti, user_id=int(get_jwt_identity()))
    return jsonify({"ok": True})


@auth_bp.post("/switch")
@jwt_required()
@csrf_protected
@limiter.limit("30/minute")
def switch():
    """Swap the token scope to another tenant or company membership."""
    payload = request.get_json(silent=True) or {}
    try:
        data = SwitchCompanyRequest.model_validate(payload)
    except ValidationError as exc:
        return validation_response(exc)
    try:
        result = switch_company(int(get_jwt_identity()), data.tenant_id, data.company_id)
    except ValueError as exc:
        return error_response(exc)
    return _token_response(result)


@auth_bp.get("/me")
@jwt_required()
def me():
    user = get_user(int(get_jwt_identity()))
    if not user:
        return jsonify({"ok": False, "error": "not_found"}), 404
    claims = get_jwt()
    return jsonify(
        {
            "ok": True,
            "user": serialize_user(user).model_dump(),
            "scope": {key: claims.get(key) for key in ("tenant_id", "company_id", "role")},
            "csrf_token": generate_csrf_token(),
        }
    )
