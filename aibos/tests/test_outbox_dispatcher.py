from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Query

pytestmark = pytest.mark.integration

from aibos.core.events.event_bus import event_bus
from aibos.core.events.event_models import EventRecord
from aibos.extensions import db
from aibos.platform.outbox import EventBusAdapter, enqueue
from aibos.platform.outbox.models import OutboxMessage
from aibos.platform.worker import dispatcher
from aibos.platform.worker.config import DispatchConfig


def _config(**overrides) -> DispatchConfig:
    defaults = {
        "batch_size": 5,
        "poll_interval": 0,
        "max_attempts": 2,
        "backoff_seconds": 3,
        "backoff_multiplier": 2,
    }
    defaults.update(overrides)
    return DispatchConfig(**defaults)


def _enqueue(event_type: str = "ledger.journal.posted", tenant_id: int | None = None) -> OutboxMessage:
    msg = enqueue(
        event_type,
        {"journal_id": 1},
        user_id=None,
        tenant_id=tenant_id,
        available_at=datetime.utcnow() - timedelta(seconds=1),
    )
    db.session.commit()
    return msg


def test_successful_dispatch_marks_sent_and_increments_attempts(app):
    msg = _enqueue()
    sent_ids: list[int] = []

    processed = dispatcher.process_ready_batch(lambda m: sent_ids.append(m.id), _config())

    db.session.refresh(msg)
    assert processed == 1
    assert sent_ids == [msg.id]
    assert msg.status == "sent"
    assert msg.attempts == 1
    assert msg.last_error is None


def test_claim_ready_messages_uses_skip_locked_and_reserves_once(app, monkeypatch):
    first = _enqueue()
    second = _enqueue(event_type="billing.invoice.posted")

    skip_locked_flags: list[bool | None] = []
    original_with_for_update = Query.with_for_update

    def _wrapped_with_for_update(self, *args, **kwargs):
        skip_locked_flags.append(kwargs.get("skip_locked"))
        return original_with_for_update(self, *args, **kwargs)

    monkeypatch.setattr(Query, "with_for_update", _wrapped_with_for_update)

    claimed = dispatcher.claim_ready_messages(db.session, batch_size=1)
    db.session.commit()
    assert [m.id for m in claimed] == [first.id]
    assert claimed[0].status == "sending"

    claimed_second = dispatcher.claim_ready_messages(db.session, batch_size=2)
    db.session.commit()
    assert [m.id for m in claimed_second] == [second.id]
    assert True in skip_locked_flags


def test_future_messages_wait(app):
    enqueue("ledger.journal.posted", {}, user_id=None, available_at=datetime.utcnow() + timedelta(minutes=5))
    db.session.commit()

    assert dispatcher.process_ready_batch(lambda m: None, _config()) == 0


def test_failed_dispatch_applies_backoff_and_honors_max_attempts(app):
    msg = _enqueue()
    cfg = _config(max_attempts=2, backoff_seconds=4, backoff_multiplier=2)

    def _send_fail(_):
        raise RuntimeError("bus unavailable")

    start = datetime.utcnow()
    dispatcher.process_ready_batch(_send_fail, cfg)
    db.session.refresh(msg)
    assert msg.attempts == 1
    assert msg.status == "retry"
    assert msg.available_at >= start + timedelta(seconds=cfg.backoff_seconds)
    assert msg.last_error == "bus unavailable"

    msg.available_at = datetime.utcnow() - timedelta(seconds=1)
    db.session.commit()

    dispatcher.process_ready_batch(_send_fail, cfg)
    db.session.refresh(msg)
    assert msg.attempts == 2
    assert msg.status == "failed"

    # Failed messages are not picked up again.
    assert dispatcher.process_ready_batch(_send_fail, cfg) == 0


@pytest.mark.parametrize(
    "attempts, expected",
    [(1, 5.0), (2, 10.0), (3, 20.0), (10, 900.0)],
)
def test_backoff_grows_and_is_capped(attempts, expected):
    assert dispatcher.compute_backoff_seconds(attempts, DispatchConfig()) == expected


def test_dispatch_once_records_events_and_publishes(app, books):
    pending = OutboxMessage.query.filter_by(status="pending").count()
    assert pending > 0
    received: list[str] = []

    def _handler(event):
        received.append(event.payload["external_id"])

    event_bus.subscribe("tenancy.company.created", _handler)
    try:
        processed = dispatcher.dispatch_once(_config(batch_size=100))
    finally:
        event_bus.unsubscribe("tenancy.company.created", _handler)

    assert processed == pending
    assert EventRecord.query.count() == pending
    assert OutboxMessage.query.filter_by(status="sent").count() == pending
    company_event = EventRecord.query.filter_by(event_type="tenancy.company.created").one()
    assert company_event.tenant_id == books.tenant.id
    assert received == [f"tenancy.company.created:{company_event.outbox_id}"]


def test_adapter_skips_messages_already_recorded(app):
    msg = _enqueue()
    adapter = EventBusAdapter()

    adapter.dispatch(msg)
    db.session.commit()
    adapter.dispatch(msg)
    db.session.commit()

    assert EventRecord.query.filter_by(outbox_id=msg.id).count() == 1
