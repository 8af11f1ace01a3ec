"""Outbox dispatcher helpers and worker loop."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from aibos.extensions import db
from aibos.platform.outbox.models import OutboxMessage
from aibos.platform.outbox.services import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RETRY,
    STATUS_SENDING,
    STATUS_SENT,
    EventBusAdapter,
)
from aibos.platform.worker.config import DispatchConfig

logger = logging.getLogger(__name__)


def compute_backoff_seconds(attempts: int, config: DispatchConfig) -> float:
    """Exponential backoff on the attempt number (1-indexed), capped."""
    delay = config.backoff_seconds * (config.backoff_multiplier ** max(attempts - 1, 0))
    return min(delay, config.max_backoff_seconds)


def claim_ready_messages(
    session,
    batch_size: int,
    now: Optional[datetime] = None,
) -> List[OutboxMessage]:
    """
    Lock ready messages with SKIP LOCKED, oldest first, and mark them 'sending'.
    """
    now = now or datetime.utcnow()
    messages = (
        session.query(OutboxMessage)
        .filter(
            OutboxMessage.available_at <= now,
            OutboxMessage.status.in_((STATUS_PENDING, STATUS_RETRY)),
        )
        .order_by(OutboxMessage.available_at, OutboxMessage.id)
        .with_for_update(skip_locked=True)
        .limit(batch_size)
        .all()
    )
    for message in messages:
        message.status = STATUS_SENDING
        message.attempts = (message.attempts or 0) + 1
    return messages


def _record_failure(message: OutboxMessage, exc: Exception, config: DispatchConfig) -> None:
    attempts = message.attempts or 1
    message.last_error = str(exc)[:2000]
    if attempts >= config.max_attempts:
        message.status = STATUS_FAILED
        logger.error("Outbox message %s (%s) failed permanently: %s", message.id, message.event_type, exc)
        return
    delay = compute_backoff_seconds(attempts, config)
    message.available_at = datetime.utcnow() + timedelta(seconds=delay)
    message.status = STATUS_RETRY
    logger.warning(
        "Outbox message %s (%s) failed on attempt %s; retrying in %.0fs",
        message.id,
        message.event_type,
        attempts,
        delay,
    )


def process_ready_batch(
    send_fn: Callable[[OutboxMessage], None],
    config: DispatchConfig,
    session=None,
) -> int:
    """
    Claim ready messages, dispatch via send_fn, and update statuses.
    Returns number of messages processed (sent or failed).
    """
    session = session or db.session
    try:
        messages = claim_ready_messages(session, batch_size=config.batch_size)
        processed = 0
        for message in messages:
            try:
                send_fn(message)
                message.status = STATUS_SENT
                message.last_error = None
            except Exception as exc:
                _record_failure(message, exc, config)
            processed += 1
        session.commit()
        return processed
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Database error while processing outbox batch")
        return 0


def dispatch_once(config: Optional[DispatchConfig] = None) -> int:
    """Drain one batch through the in-process bus; used by the CLI."""
    cfg = config or DispatchConfig.from_env()
    return process_ready_batch(EventBusAdapter().dispatch, cfg)


def run_dispatcher(
    config: Optional[DispatchConfig] = None,
    send_fn: Optional[Callable[[OutboxMessage], None]] = None,
) -> None:
    """
    Run the dispatcher loop; defaults to publishing to the in-process bus via adapter.
    """
    cfg = config or DispatchConfig.from_env()
    dispatch_callable = send_fn or EventBusAdapter().dispatch

    logger.info(
        "Starting outbox dispatcher (batch_size=%s, poll_interval=%ss, max_attempts=%s)",
        cfg.batch_size,
        cfg.poll_interval,
        cfg.max_attempts,
    )

    try:
        while True:
            processed = process_ready_batch(dispatch_callable, cfg)
            time.sleep(cfg.poll_interval if processed == 0 else min(0.1, cfg.poll_interval))
    except KeyboardInterrupt:
        logger.info("Dispatcher stopped by user")
