"""Ledger domain event catalog."""

from __future__ import annotations

LEDGER_ACCOUNT_CREATED = "ledger.account.created"
LEDGER_ACCOUNT_DEACTIVATED = "ledger.account.deactivated"
LEDGER_JOURNAL_CREATED = "ledger.journal.created"
LEDGER_JOURNAL_SUBMITTED = "ledger.journal.submitted"
LEDGER_JOURNAL_APPROVED = "ledger.journal.approved"
LEDGER_JOURNAL_POSTED = "ledger.journal.posted"
LEDGER_JOURNAL_REVERSED = "ledger.journal.reversed"

_JOURNAL_REF = {"journal_id": "int", "company_id": "int", "journal_number": "str"}

EVENT_CATALOG = {
    LEDGER_ACCOUNT_CREATED: {
        "version": "v1",
        "payload": {
            "account_id": "int",
            "company_id": "int",
            "code": "str",
            "name": "str",
            "account_type": "str",
            "account_subtype": "str",
        },
    },
    LEDGER_ACCOUNT_DEACTIVATED: {
        "version": "v1",
        "payload": {"account_id": "int", "company_id": "int", "code": "str"},
    },
    LEDGER_JOURNAL_CREATED: {
        "version": "v1",
        "payload": {**_JOURNAL_REF, "currency": "str", "total_debit": "decimal", "line_count": "int"},
    },
    # Posting held back because the base total reached the approval threshold.
    LEDGER_JOURNAL_SUBMITTED: {
        "version": "v1",
        "payload": {**_JOURNAL_REF, "base_total": "decimal", "threshold": "decimal"},
    },
    LEDGER_JOURNAL_APPROVED: {
        "version": "v1",
        "payload": {**_JOURNAL_REF, "approved_by": "int"},
    },
    LEDGER_JOURNAL_POSTED: {
        "version": "v1",
        "payload": {
            **_JOURNAL_REF,
            "journal_date": "date",
            "currency": "str",
            "base_total_debit": "decimal",
            "base_total_credit": "decimal",
            "source": "str",
        },
    },
    LEDGER_JOURNAL_REVERSED: {
        "version": "v1",
        "payload": {**_JOURNAL_REF, "reversal_id": "int", "reversal_date": "date", "reason": "str"},
    },
}
