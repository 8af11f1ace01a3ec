"""Period domain event catalog."""

from __future__ import annotations

PERIODS_GENERATED = "periods.fiscal_year.generated"
PERIOD_CLOSED = "periods.period.closed"
PERIOD_REOPENED = "periods.period.reopened"
PERIOD_LOCKED = "periods.period.locked"

EVENT_CATALOG = {
    PERIODS_GENERATED: {
        "version": "v1",
        "payload": {"company_id": "int", "fiscal_year": "int", "period_ids": "list[int]"},
    },
    PERIOD_CLOSED: {
        "version": "v1",
        "payload": {
            "period_id": "int",
            "company_id": "int",
            "forced": "bool",
            "reversal_ids": "list[int]",
            "next_period_id": "int?",
        },
    },
    PERIOD_REOPENED: {
        "version": "v1",
        "payload": {"period_id": "int", "company_id": "int", "reason": "str"},
    },
    PERIOD_LOCKED: {
        "version": "v1",
        "payload": {"period_id": "int", "company_id": "int", "lock_type": "str"},
    },
}
