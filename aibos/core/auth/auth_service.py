"""Authentication service layer."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    decode_token,
)

from aibos.core.audit.services import record_audit
from aibos.core.auth.events import (
    AUTH_COMPANY_SWITCHED,
    AUTH_USER_LOGGED_IN,
    AUTH_USER_LOGGED_OUT,
    AUTH_USER_REGISTERED,
)
from aibos.core.auth.models import JWTBlocklist, SessionToken
from aibos.core.auth.password import verify_password
from aibos.core.auth.schemas import RegisterRequest
from aibos.core.users.models import User
from aibos.core.users.services import create_user, find_user_by_email, get_user
from aibos.core.utils.errors import DomainError
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

SCOPE_CLAIMS = ("tenant_id", "company_id", "role")


def authenticate_user(email: str, password: str) -> Optional[User]:
    """Return the user if credentials are valid."""
    user = find_user_by_email(email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def _scope_claims(claims: Optional[dict]) -> dict:
    claims = claims or {}
    return {key: claims.get(key) for key in SCOPE_CLAIMS}


def access_token_for(user: User, claims: Optional[dict]) -> str:
    return create_access_token(identity=str(user.id), additional_claims=_scope_claims(claims))


def issue_tokens(user: User, claims: Optional[dict] = None) -> dict[str, str]:
    """Create access and refresh tokens carrying the tenant scope claims."""
    identity = str(user.id)
    scope_claims = _scope_claims(claims)
    access_token = create_access_token(identity=identity, additional_claims=scope_claims)
    refresh_token = create_refresh_token(identity=identity, additional_claims=scope_claims)

    # Persist refresh jti for revocation checks
    decoded_refresh = decode_token(refresh_token)
    refresh_jti = decoded_refresh.get("jti")
    expires = decoded_refresh.get("exp")
    db.session.add(
        SessionToken(
            user_id=user.id,
            jti=refresh_jti,
            expires_at=datetime.utcfromtimestamp(expires) if expires else None,
        )
    )
    db.session.commit()

    return {"access_token": access_token, "refresh_token": refresh_token}


def is_token_revoked(jti: Optional[str]) -> bool:
    if not jti:
        return False
    return JWTBlocklist.query.filter_by(jti=jti).first() is not None


def revoke_refresh_token(jti: str, user_id: Optional[int] = None) -> None:
    """Revoke a refresh token by JTI."""
    token = SessionToken.query.filter_by(jti=jti).first()
    if token:
        token.revoked = True
    if not is_token_revoked(jti):
        db.session.add(JWTBlocklist(jti=jti, created_by=user_id))
    if user_id is not None:
        enqueue_outbox(AUTH_USER_LOGGED_OUT, {"user_id": user_id, "jti": jti}, user_id=user_id)
    db.session.commit()


def register_user(payload: RegisterRequest) -> dict:
    """Create a user and, when ``tenant_name`` is given, a tenant they administer."""
    from aibos.core.tenancy.services import create_tenant, resolve_scope

    user = create_user(payload.email, payload.password, full_name=payload.full_name)
    enqueue_outbox(
        AUTH_USER_REGISTERED,
        {
            "user_id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "tenant_id": None,
        },
        user_id=user.id,
    )
    record_audit(
        "user.registered",
        "user",
        user.id,
        tenant_id=None,
        user_id=user.id,
        category="authentication",
        details={"email": user.email},
    )
    if payload.tenant_name:
        # create_tenant commits the user along with the tenant.
        create_tenant(user, payload.tenant_name)
    else:
        db.session.commit()
    logger.info("Registered user %s", user.id)

    claims = resolve_scope(user) or {}
    return {"user": user, "claims": claims, **issue_tokens(user, claims)}


def login(
    email: str,
    password: str,
    tenant_id: Optional[int] = None,
    company_id: Optional[int] = None,
) -> dict:
    """Check credentials, resolve the tenant scope and issue tokens.

    Both outcomes are written to the audit trail.
    """
    from aibos.core.tenancy.services import resolve_scope

    user = authenticate_user(email, password)
    if user is None:
        record_audit(
            "auth.login",
            "user",
            None,
            tenant_id=None,
            user_id=None,
            category="authentication",
            severity="medium",
            outcome="failure",
            details={"email": (email or "").strip().lower(), "reason": "invalid_credentials"},
        )
        db.session.commit()
        logger.warning("Failed login for %s", email)
        raise DomainError("invalid_credentials", "Invalid email or password")

    claims = resolve_scope(user, tenant_id, company_id) or {}
    user.last_login_at = datetime.utcnow()
    enqueue_outbox(
        AUTH_USER_LOGGED_IN,
        {"user_id": user.id, "tenant_id": claims.get("tenant_id"), "company_id": claims.get("company_id")},
        user_id=user.id,
        tenant_id=claims.get("tenant_id"),
    )
    record_audit(
        "auth.login",
        "user",
        user.id,
        tenant_id=claims.get("tenant_id"),
        user_id=user.id,
        category="authentication",
        details={"company_id": claims.get("company_id"), "role": claims.get("role")},
    )
    tokens = issue_tokens(user, claims)
    return {"user": user, "claims": claims, **tokens}


def refresh_access_token(user_id: int, claims: dict) -> dict:
    """New access token for the refresh token's scope, re-checked against memberships."""
    from aibos.core.tenancy.services import resolve_scope

    user = get_user(user_id)
    if user is None or not user.is_active:
        raise DomainError("unauthorized", "User no longer active")
    scope_claims = resolve_scope(user, claims.get("tenant_id"), claims.get("company_id")) or {}
    return {"access_token": access_token_for(user, scope_claims), "claims": scope_claims}


def switch_company(user_id: int, tenant_id: Optional[int], company_id: Optional[int]) -> dict:
    """Re-issue tokens for another tenant/company the user belongs to."""
    from aibos.core.tenancy.services import resolve_scope

    user = get_user(user_id)
    if user is None:
        raise DomainError("unauthorized", "User not found")
    claims = resolve_scope(user, tenant_id, company_id)
    if claims is None:
        raise DomainError("forbidden", "No tenant membership")

    enqueue_outbox(
        AUTH_COMPANY_SWITCHED,
        {"user_id": user.id, **claims},
        user_id=user.id,
        tenant_id=claims["tenant_id"],
    )
    record_audit(
        "auth.company_switched",
        "company",
        claims.get("company_id"),
        tenant_id=claims["tenant_id"],
        user_id=user.id,
        category="authorization",
        details={"role": claims["role"]},
    )
    tokens = issue_tokens(user, claims)
    return {"user": user, "claims": claims, **tokens}
