"""Idempotency-key bookkeeping for retried write requests."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from hashlib import sha256
from typing import Any, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from aibos.core.utils.errors import DomainError
from aibos.extensions import db
from aibos.platform.idempotency.models import IdempotencyKey

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

MIN_KEY_LENGTH = 8
MAX_KEY_LENGTH = 255
DEFAULT_TTL_HOURS = 24


def _ttl() -> timedelta:
    hours = DEFAULT_TTL_HOURS
    if has_app_context():
        hours = int(current_app.config.get("IDEMPOTENCY_TTL_HOURS", DEFAULT_TTL_HOURS))
    return timedelta(hours=hours)


def validate_key(key: str) -> str:
    key = (key or "").strip()
    if not MIN_KEY_LENGTH <= len(key) <= MAX_KEY_LENGTH:
        raise DomainError(
            "invalid_idempotency_key",
            f"Idempotency-Key must be {MIN_KEY_LENGTH}-{MAX_KEY_LENGTH} characters",
        )
    return key


def hash_request(method: str, path: str, body: Any) -> str:
    """Fingerprint of the request; JSON bodies are canonicalised first."""
    if isinstance(body, (dict, list)):
        rendered = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    elif isinstance(body, bytes):
        rendered = body.decode("utf-8", errors="replace")
    else:
        rendered = str(body or "")
    return sha256(f"{method.upper()} {path}\n{rendered}".encode("utf-8")).hexdigest()


def begin(
    tenant_id: int,
    key: str,
    request_hash: str,
    now: Optional[datetime] = None,
) -> Optional[IdempotencyKey]:
    """Claim ``key`` for this request.

    Returns None when the caller should execute the request, or the stored
    completed record when the response should be replayed.
    """
    key = validate_key(key)
    now = now or datetime.utcnow()
    record = db.session.get(IdempotencyKey, (tenant_id, key))

    if record is not None and record.expires_at <= now:
        db.session.delete(record)
        db.session.flush()
        record = None

    if record is None:
        db.session.add(
            IdempotencyKey(
                tenant_id=tenant_id,
                key=key,
                request_hash=request_hash,
                status=STATUS_PROCESSING,
                created_at=now,
                expires_at=now + _ttl(),
            )
        )
        try:
            db.session.commit()
        except IntegrityError:
            # Another request inserted the same key first.
            db.session.rollback()
            raise DomainError("idempotency_in_progress", "A request with this key is already in progress")
        return None

    if record.request_hash != request_hash:
        raise DomainError(
            "idempotency_key_reused",
            "Idempotency-Key was already used with a different request payload",
        )
    if record.status == STATUS_COMPLETED:
        logger.info("Replaying idempotent response for tenant %s key %s", tenant_id, key)
        return record
    if record.status == STATUS_PROCESSING:
        raise DomainError("idempotency_in_progress", "A request with this key is already in progress")

    # Failed attempts may be retried with the same key and payload.
    record.status = STATUS_PROCESSING
    record.response_code = None
    record.response_body = None
    record.expires_at = now + _ttl()
    db.session.commit()
    return None


def complete(tenant_id: int, key: str, response_code: int, response_body: Any) -> None:
    record = db.session.get(IdempotencyKey, (tenant_id, key))
    if record is None:
        return
    record.status = STATUS_COMPLETED
    record.response_code = response_code
    record.response_body = response_body
    db.session.commit()


def fail(tenant_id: int, key: str) -> None:
    db.session.rollback()
    record = db.session.get(IdempotencyKey, (tenant_id, key))
    if record is None:
        return
    record.status = STATUS_FAILED
    db.session.commit()


def purge_expired(now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    deleted = IdempotencyKey.query.filter(IdempotencyKey.expires_at <= now).delete(synchronize_session=False)
    db.session.commit()
    logger.info("Purged %s expired idempotency keys", deleted)
    return deleted
