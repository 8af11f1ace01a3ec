"""Idempotency keys for retried write requests."""

from aibos.platform.idempotency.decorators import idempotent
from aibos.platform.idempotency.models import IdempotencyKey
from aibos.platform.idempotency.services import begin, complete, fail, hash_request, purge_expired

__all__ = [
    "IdempotencyKey",
    "begin",
    "complete",
    "fail",
    "hash_request",
    "idempotent",
    "purge_expired",
]
