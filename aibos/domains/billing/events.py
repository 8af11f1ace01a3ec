"""Billing domain event catalog."""

from __future__ import annotations

BILLING_INVOICE_CREATED = "billing.invoice.created"
BILLING_INVOICE_POSTED = "billing.invoice.posted"
BILLING_INVOICE_VOIDED = "billing.invoice.voided"
BILLING_BILL_CREATED = "billing.bill.created"
BILLING_BILL_POSTED = "billing.bill.posted"
BILLING_BILL_VOIDED = "billing.bill.voided"
BILLING_PAYMENT_RECORDED = "billing.payment.recorded"
BILLING_BANK_STATEMENT_IMPORTED = "billing.bank_statement.imported"
BILLING_BANK_TRANSACTION_MATCHED = "billing.bank_transaction.matched"

_DOCUMENT = {"document_id": "int", "company_id": "int", "number": "str"}

EVENT_CATALOG = {
    BILLING_INVOICE_CREATED: {
        "version": "v1",
        "payload": {**_DOCUMENT, "customer_name": "str", "currency": "str", "total_amount": "decimal"},
    },
    BILLING_INVOICE_POSTED: {"version": "v1", "payload": {**_DOCUMENT, "journal_id": "int"}},
    BILLING_INVOICE_VOIDED: {"version": "v1", "payload": {**_DOCUMENT, "reversal_id": "int?"}},
    BILLING_BILL_CREATED: {
        "version": "v1",
        "payload": {**_DOCUMENT, "supplier_name": "str", "currency": "str", "total_amount": "decimal"},
    },
    BILLING_BILL_POSTED: {"version": "v1", "payload": {**_DOCUMENT, "journal_id": "int"}},
    BILLING_BILL_VOIDED: {"version": "v1", "payload": {**_DOCUMENT, "reversal_id": "int?"}},
    BILLING_PAYMENT_RECORDED: {
        "version": "v1",
        "payload": {
            "payment_id": "int",
            "direction": "str",  # 'received' or 'made'
            "document_type": "str",
            "document_id": "int?",  # null when split across documents
            "amount": "decimal",
            "currency": "str",
            "journal_id": "int",
            "document_status": "str?",
            "allocations": "list[{document_id, amount, document_status}]",
        },
    },
    BILLING_BANK_STATEMENT_IMPORTED: {
        "version": "v1",
        "payload": {
            "import_id": "int",
            "company_id": "int",
            "bank_account_id": "int",
            "bank_format": "str",
            "imported_count": "int",
            "duplicate_count": "int",
            "error_count": "int",
        },
    },
    BILLING_BANK_TRANSACTION_MATCHED: {
        "version": "v1",
        "payload": {
            "transaction_id": "int",
            "company_id": "int",
            "match_type": "str",  # invoice, bill or payment
            "match_id": "int",
            "payment_id": "int",
            "confidence": "decimal?",
        },
    },
}
