"""Outbox staging and the bus adapter used by the dispatcher."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from aibos.core.events.event_bus import event_bus
from aibos.core.events.event_models import EventRecord
from aibos.extensions import db
from aibos.platform.outbox.models import OutboxMessage

STATUS_PENDING = "pending"
STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_RETRY = "retry"
STATUS_FAILED = "failed"


class EventBusAdapter:
    """Publish outbox messages to the in-process bus and record them as events."""

    def __init__(self, bus=None) -> None:
        self.bus = bus or event_bus

    def dispatch(self, message: OutboxMessage) -> None:
        if EventRecord.query.filter_by(outbox_id=message.id).first() is not None:
            return
        payload = dict(message.payload or {})
        payload.setdefault("external_id", f"{message.event_type}:{message.id}")
        payload.setdefault("event_id", message.id)

        event = EventRecord(
            outbox_id=message.id,
            event_type=message.event_type,
            payload=payload,
            user_id=message.user_id,
            tenant_id=message.tenant_id,
            created_at=message.created_at,
        )
        self.bus.publish(event)
        db.session.add(event)


def enqueue(
    event_name: str,
    payload: dict,
    user_id: Optional[int],
    tenant_id: Optional[int] = None,
    available_at: Optional[datetime] = None,
) -> OutboxMessage:
    """
    Stage an event in the outbox. Caller should commit alongside domain changes.
    """
    message = OutboxMessage(
        event_type=event_name,
        # Decimals/dates are stringified so the JSON column accepts them.
        payload=json.loads(json.dumps(payload or {}, default=str)),
        user_id=user_id,
        tenant_id=tenant_id,
        available_at=available_at or datetime.utcnow(),
        status=STATUS_PENDING,
        attempts=0,
    )
    db.session.add(message)
    return message
