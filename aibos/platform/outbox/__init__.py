"""Transactional outbox models and helpers."""

from aibos.platform.outbox.models import OutboxMessage
from aibos.platform.outbox.services import EventBusAdapter, enqueue

__all__ = [
    "OutboxMessage",
    "enqueue",
    "EventBusAdapter",
]
