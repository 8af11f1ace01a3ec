"""Hash-chained audit trail.

Each tenant has its own chain: ``entry_hash = sha256(prev_hash + canonical
entry)``. Entries are staged on the current session and committed with the
business change they describe, so a rolled-back change leaves no audit row.
Appends hold a row lock on the chain's ``audit_chain_head`` row, so concurrent
writers to one chain take turns instead of forking it.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from hashlib import sha256
from typing import Any, Dict, Optional

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from aibos.core.audit.models import AuditChainHead, AuditLog
from aibos.core.utils.errors import DomainError
from aibos.extensions import db

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

CATEGORIES = {
    "authentication",
    "authorization",
    "data_access",
    "data_modification",
    "system",
    "compliance",
}
SEVERITIES = {"low", "medium", "high", "critical"}
OUTCOMES = {"success", "failure"}


def _canonical_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # Round-trip through JSON so the hashed form equals what the DB returns.
    return json.loads(json.dumps(details or {}, default=str, sort_keys=True))


def _compute_hash(prev_hash: str, entry: AuditLog) -> str:
    body = {
        "tenant_id": entry.tenant_id,
        "user_id": entry.user_id,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "category": entry.category,
        "severity": entry.severity,
        "outcome": entry.outcome,
        "details": entry.details or {},
        "created_at": entry.created_at.isoformat(),
    }
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return sha256((prev_hash + canonical).encode("utf-8")).hexdigest()


def _chain_query(tenant_id: Optional[int]):
    if tenant_id is None:
        return AuditLog.query.filter(AuditLog.tenant_id.is_(None))
    return AuditLog.query.filter(AuditLog.tenant_id == tenant_id)


def _chain_key(tenant_id: Optional[int]) -> str:
    return "system" if tenant_id is None else f"tenant:{tenant_id}"


def _lock_chain_head(tenant_id: Optional[int]) -> AuditChainHead:
    """Row-lock the chain head, creating it from the newest entry on first use."""
    key = _chain_key(tenant_id)
    head = AuditChainHead.query.filter_by(chain_key=key).populate_existing().with_for_update().first()
    if head is not None:
        return head

    latest = _chain_query(tenant_id).order_by(AuditLog.id.desc()).first()
    try:
        with db.session.begin_nested():
            db.session.add(
                AuditChainHead(
                    chain_key=key,
                    last_entry_id=latest.id if latest else None,
                    last_hash=latest.entry_hash if latest else GENESIS_HASH,
                )
            )
    except IntegrityError:
        # A concurrent writer created the head first.
        logger.debug("Audit chain head %s created concurrently", key)
    return AuditChainHead.query.filter_by(chain_key=key).populate_existing().with_for_update().one()


def record_audit(
    action: str,
    resource: str,
    resource_id: Any = None,
    *,
    tenant_id: Optional[int],
    user_id: Optional[int],
    category: str = "data_modification",
    severity: str = "low",
    outcome: str = "success",
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit entry. Caller commits alongside the domain change."""
    if category not in CATEGORIES:
        raise ValueError(f"unknown audit category: {category}")
    if severity not in SEVERITIES:
        raise ValueError(f"unknown audit severity: {severity}")
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown audit outcome: {outcome}")

    head = _lock_chain_head(tenant_id)
    prev_hash = head.last_hash

    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    entry = AuditLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        category=category,
        severity=severity,
        outcome=outcome,
        details=_canonical_details(details),
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=datetime.utcnow(),
        prev_hash=prev_hash,
    )
    entry.entry_hash = _compute_hash(prev_hash, entry)
    db.session.add(entry)
    db.session.flush()
    head.last_entry_id = entry.id
    head.last_hash = entry.entry_hash
    return entry


def list_entries(
    tenant_id: int,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
):
    """Filtered query over a tenant's audit entries, newest first."""
    query = _chain_query(tenant_id)
    if resource:
        query = query.filter(AuditLog.resource == resource)
    if resource_id:
        query = query.filter(AuditLog.resource_id == str(resource_id))
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if from_date:
        query = query.filter(AuditLog.created_at >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        query = query.filter(AuditLog.created_at <= datetime.combine(to_date, datetime.max.time()))
    return query.order_by(AuditLog.id.desc())


def verify_chain(tenant_id: Optional[int]) -> Dict[str, Any]:
    """Walk the chain oldest-first and report the first broken link."""
    prev_hash = GENESIS_HASH
    checked = 0
    for entry in _chain_query(tenant_id).order_by(AuditLog.id.asc()).yield_per(500):
        if entry.prev_hash != prev_hash or _compute_hash(prev_hash, entry) != entry.entry_hash:
            logger.warning("Audit chain broken for tenant %s at entry %s", tenant_id, entry.id)
            return {"valid": False, "checked": checked, "broken_at": entry.id}
        prev_hash = entry.entry_hash
        checked += 1
    return {"valid": True, "checked": checked, "broken_at": None}


def serialize_entry(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "tenant_id": entry.tenant_id,
        "user_id": entry.user_id,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "category": entry.category,
        "severity": entry.severity,
        "outcome": entry.outcome,
        "details": entry.details or {},
        "ip_address": entry.ip_address,
        "created_at": entry.created_at.isoformat(),
        "entry_hash": entry.entry_hash,
    }


def require_entry(tenant_id: int, entry_id: int) -> AuditLog:
    entry = _chain_query(tenant_id).filter(AuditLog.id == entry_id).first()
    if entry is None:
        raise DomainError("not_found", "Audit entry not found")
    return entry
