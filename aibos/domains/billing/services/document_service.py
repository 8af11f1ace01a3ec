"""Invoices and bills: drafting, posting to the GL and voiding."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Type, Union

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import DOCUMENT_CREATE, DOCUMENT_POST
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company, lock_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import MAX_AMOUNT, MAX_UNIT_AMOUNT, ZERO, parse_amount, quantize, to_decimal
from aibos.domains.billing.events import (
    BILLING_BILL_CREATED,
    BILLING_BILL_POSTED,
    BILLING_BILL_VOIDED,
    BILLING_INVOICE_CREATED,
    BILLING_INVOICE_POSTED,
    BILLING_INVOICE_VOIDED,
)
from aibos.domains.billing.models.billing_models import (
    DOC_DRAFT,
    DOC_POSTED,
    DOC_VOID,
    DOCUMENT_BILL,
    DOCUMENT_INVOICE,
    Bill,
    BillLine,
    Invoice,
    InvoiceLine,
)
from aibos.domains.fx.services.currency_service import require_currency
from aibos.domains.ledger.models.ledger_models import Account, Journal
from aibos.domains.ledger.services.account_service import find_account_by_subtype
from aibos.domains.ledger.services.posting_service import stage_journal, stage_posting, stage_reversal
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

Document = Union[Invoice, Bill]

MAX_DOCUMENT_LINES = 99
HUNDRED = Decimal("100")


def _company(scope: TenantScope) -> Company:
    return current_company(scope)


def _today() -> date:
    return datetime.utcnow().date()


def _require_account(company: Company, account_id: Optional[int], role: str) -> Account:
    account = None
    if account_id is not None:
        account = Account.query.filter_by(id=account_id, tenant_id=company.tenant_id, company_id=company.id).first()
    if account is None:
        raise DomainError("account_not_found", f"{role} account not found", {"account_id": account_id, "role": role})
    return account


def _next_number(model: Type[Document], column: str, prefix: str, company_id: int, on: date) -> str:
    lock_company(company_id)
    stem = f"{prefix}-{on:%Y%m}-"
    attr = getattr(model, column)
    highest = 0
    for (number,) in db.session.query(attr).filter(model.company_id == company_id, attr.like(f"{stem}%")).all():
        tail = number[len(stem):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{stem}{highest + 1:04d}"


def _line_value(raw: dict, key: str, index: int, default=None) -> Decimal:
    try:
        return parse_amount(raw.get(key, default), places=4, limit=MAX_UNIT_AMOUNT)
    except ValueError as exc:
        if str(exc) == "amount_out_of_range":
            raise DomainError(
                "amount_out_of_range", f"Line {index}: {key} is too large", {"line": index, "field": key}
            )
        raise DomainError("validation_error", f"Line {index}: {key} is not a number", {"line": index, "field": key})


def _checked_amount(value: Decimal, details: dict) -> Decimal:
    try:
        return parse_amount(value)
    except ValueError:
        raise DomainError(
            "amount_out_of_range",
            f"Amount exceeds the largest storable amount {MAX_AMOUNT}",
            {**details, "max_amount": str(MAX_AMOUNT)},
        )


def _build_lines(company: Company, raw_lines: list, line_model, account_field: str) -> list:
    if not raw_lines:
        raise DomainError("validation_error", "At least one line is required", {"field": "lines"})
    if len(raw_lines) > MAX_DOCUMENT_LINES:
        raise DomainError("validation_error", f"At most {MAX_DOCUMENT_LINES} lines", {"field": "lines"})
    lines = []
    for index, raw in enumerate(raw_lines, start=1):
        quantity = _line_value(raw, "quantity", index, default=1)
        unit_price = _line_value(raw, "unit_price", index)
        tax_rate = _line_value(raw, "tax_rate", index, default=0)
        if quantity <= 0 or unit_price < 0:
            raise DomainError("validation_error", f"Line {index}: quantity must be positive", {"line": index})
        if not ZERO <= tax_rate <= HUNDRED:
            raise DomainError("validation_error", f"Line {index}: tax_rate is a percentage", {"line": index})
        account = _require_account(company, raw.get(account_field), "line")
        line_amount = _checked_amount(quantity * unit_price, {"line": index})
        lines.append(
            line_model(
                line_number=index,
                description=(raw.get("description") or "").strip() or f"Line {index}",
                quantity=quantity,
                unit_price=unit_price,
                line_amount=line_amount,
                tax_rate=tax_rate,
                tax_amount=quantize(line_amount * tax_rate / HUNDRED),
                **{account_field: account.id},
            )
        )
    return lines


def _apply_totals(document: Document) -> None:
    document.subtotal = sum((line.line_amount for line in document.lines), ZERO)
    document.tax_amount = sum((line.tax_amount for line in document.lines), ZERO)
    document.total_amount = _checked_amount(document.subtotal + document.tax_amount, {"field": "total_amount"})
    document.paid_amount = ZERO


def _stage_common(scope: TenantScope, company: Company, document: Document, data: dict) -> None:
    currency = require_currency(data.get("currency") or company.base_currency).code
    document.tenant_id = company.tenant_id
    document.company_id = company.id
    document.currency = currency
    document.exchange_rate = to_decimal(data["exchange_rate"]) if data.get("exchange_rate") is not None else None
    document.due_date = data.get("due_date")
    document.notes = data.get("notes")
    document.status = DOC_DRAFT
    document.created_by = scope.user_id


def _document_payload(document: Document) -> dict:
    return {"document_id": document.id, "company_id": document.company_id, "number": document.document_number}


def create_invoice(scope: TenantScope, data: dict) -> Invoice:
    scope.require(DOCUMENT_CREATE)
    company = _company(scope)
    invoice_date = data.get("invoice_date") or _today()

    lock_company(company.id)
    number = (data.get("invoice_number") or "").strip()
    if number and Invoice.query.filter_by(company_id=company.id, invoice_number=number).first():
        raise DomainError("duplicate_document_number", f"Invoice number '{number}' already exists")
    number = number or _next_number(Invoice, "invoice_number", "INV", company.id, invoice_date)

    receivable_id = data.get("receivable_account_id")
    if receivable_id is None:
        default = find_account_by_subtype(company.tenant_id, company.id, "receivable")
        receivable_id = default.id if default else None
    receivable = _require_account(company, receivable_id, "receivable")

    invoice = Invoice(
        invoice_number=number,
        invoice_date=invoice_date,
        customer_name=data["customer_name"].strip(),
        receivable_account_id=receivable.id,
    )
    _stage_common(scope, company, invoice, data)
    invoice.lines = _build_lines(company, data.get("lines") or [], InvoiceLine, "revenue_account_id")
    _apply_totals(invoice)
    db.session.add(invoice)
    db.session.flush()

    enqueue_outbox(
        BILLING_INVOICE_CREATED,
        {
            **_document_payload(invoice),
            "customer_name": invoice.customer_name,
            "currency": invoice.currency,
            "total_amount": invoice.total_amount,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "invoice.created",
        "invoice",
        invoice.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={"number": invoice.invoice_number, "total": str(invoice.total_amount)},
    )
    db.session.commit()
    return invoice


def create_bill(scope: TenantScope, data: dict) -> Bill:
    scope.require(DOCUMENT_CREATE)
    company = _company(scope)
    bill_date = data.get("bill_date") or _today()

    lock_company(company.id)
    number = (data.get("bill_number") or "").strip()
    if number and Bill.query.filter_by(company_id=company.id, bill_number=number).first():
        raise DomainError("duplicate_document_number", f"Bill number '{number}' already exists")
    number = number or _next_number(Bill, "bill_number", "BILL", company.id, bill_date)

    payable_id = data.get("payable_account_id")
    if payable_id is None:
        default = find_account_by_subtype(company.tenant_id, company.id, "payable")
        payable_id = default.id if default else None
    payable = _require_account(company, payable_id, "payable")

    bill = Bill(
        bill_number=number,
        bill_date=bill_date,
        supplier_name=data["supplier_name"].strip(),
        supplier_reference=data.get("supplier_reference"),
        payable_account_id=payable.id,
    )
    _stage_common(scope, company, bill, data)
    bill.lines = _build_lines(company, data.get("lines") or [], BillLine, "expense_account_id")
    _apply_totals(bill)
    db.session.add(bill)
    db.session.flush()

    enqueue_outbox(
        BILLING_BILL_CREATED,
        {
            **_document_payload(bill),
            "supplier_name": bill.supplier_name,
            "currency": bill.currency,
            "total_amount": bill.total_amount,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "bill.created",
        "bill",
        bill.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={"number": bill.bill_number, "total": str(bill.total_amount)},
    )
    db.session.commit()
    return bill


def _tax_account(company: Company, subtype: str, tax_total: Decimal) -> Optional[Account]:
    if tax_total <= 0:
        return None
    account = find_account_by_subtype(company.tenant_id, company.id, subtype)
    if account is None:
        raise DomainError(
            "tax_account_missing",
            f"No active {subtype} account for tax of {tax_total}",
            {"subtype": subtype, "tax_amount": str(tax_total)},
        )
    return account


def _grouped(lines, side: str) -> List[dict]:
    """One journal line per GL account, skipping zero amounts."""
    by_account: "OrderedDict[int, Decimal]" = OrderedDict()
    descriptions = {}
    for line in lines:
        by_account[line.account_id] = by_account.get(line.account_id, ZERO) + Decimal(line.line_amount)
        descriptions.setdefault(line.account_id, line.description)
    return [
        {"account_id": account_id, side: amount, "description": descriptions[account_id]}
        for account_id, amount in by_account.items()
        if amount
    ]


def _post_document(scope: TenantScope, document: Document, journal_lines: List[dict], source: str):
    company = _company(scope)
    payload = {
        "journal_date": document.document_date,
        "currency": document.currency,
        "exchange_rate": document.exchange_rate,
        "description": f"{source.title()} {document.document_number}",
        "reference": document.document_number,
        "lines": journal_lines,
    }
    journal = stage_journal(scope, company, payload, source=source, authorize=False)
    stage_posting(scope, company, journal, bypass_approval=True)
    document.journal_id = journal.id
    document.exchange_rate = journal.exchange_rate
    document.status = DOC_POSTED
    return journal


def _require_draft(document: Document) -> None:
    if document.status != DOC_DRAFT:
        raise DomainError(
            "document_not_editable", f"Document is {document.status}, only drafts can be posted", {"status": document.status}
        )


def post_invoice(scope: TenantScope, invoice_id: int) -> Invoice:
    """Dr receivable (total) / Cr revenue per account / Cr tax payable."""
    scope.require(DOCUMENT_POST)
    invoice = get_invoice(scope, invoice_id)
    _require_draft(invoice)
    tax_account = _tax_account(_company(scope), "tax_payable", Decimal(invoice.tax_amount))

    lines = [{"account_id": invoice.receivable_account_id, "debit": invoice.total_amount, "description": invoice.customer_name}]
    lines.extend(_grouped(invoice.lines, "credit"))
    if tax_account is not None:
        lines.append({"account_id": tax_account.id, "credit": invoice.tax_amount, "description": "Output tax"})
    journal = _post_document(scope, invoice, lines, DOCUMENT_INVOICE)

    enqueue_outbox(
        BILLING_INVOICE_POSTED,
        {**_document_payload(invoice), "journal_id": journal.id},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "invoice.posted",
        "invoice",
        invoice.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"journal_id": journal.id, "journal_number": journal.journal_number},
    )
    db.session.commit()
    logger.info("Invoice %s posted as %s", invoice.invoice_number, journal.journal_number)
    return invoice


def post_bill(scope: TenantScope, bill_id: int) -> Bill:
    """Dr expense per account / Dr tax receivable / Cr payable (total)."""
    scope.require(DOCUMENT_POST)
    bill = get_bill(scope, bill_id)
    _require_draft(bill)
    tax_account = _tax_account(_company(scope), "tax_receivable", Decimal(bill.tax_amount))

    lines = _grouped(bill.lines, "debit")
    if tax_account is not None:
        lines.append({"account_id": tax_account.id, "debit": bill.tax_amount, "description": "Input tax"})
    lines.append({"account_id": bill.payable_account_id, "credit": bill.total_amount, "description": bill.supplier_name})
    journal = _post_document(scope, bill, lines, DOCUMENT_BILL)

    enqueue_outbox(
        BILLING_BILL_POSTED,
        {**_document_payload(bill), "journal_id": journal.id},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "bill.posted",
        "bill",
        bill.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"journal_id": journal.id, "journal_number": journal.journal_number},
    )
    db.session.commit()
    logger.info("Bill %s posted as %s", bill.bill_number, journal.journal_number)
    return bill


def _void(scope: TenantScope, document: Document, reason: Optional[str]) -> Optional[int]:
    if document.status == DOC_DRAFT:
        document.status = DOC_VOID
        return None
    if document.status != DOC_POSTED or to_decimal(document.paid_amount) > 0:
        raise DomainError(
            "document_not_editable", "Only drafts or unpaid posted documents can be voided", {"status": document.status}
        )
    journal = Journal.query.filter_by(id=document.journal_id, company_id=document.company_id).first()
    reversal = stage_reversal(scope, _company(scope), journal, reason=reason or f"void {document.document_number}")
    document.status = DOC_VOID
    return reversal.id


def void_invoice(scope: TenantScope, invoice_id: int, reason: Optional[str] = None) -> Invoice:
    scope.require(DOCUMENT_POST)
    invoice = get_invoice(scope, invoice_id)
    reversal_id = _void(scope, invoice, reason)
    enqueue_outbox(
        BILLING_INVOICE_VOIDED,
        {**_document_payload(invoice), "reversal_id": reversal_id},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "invoice.voided",
        "invoice",
        invoice.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"reason": reason, "reversal_id": reversal_id},
    )
    db.session.commit()
    return invoice


def void_bill(scope: TenantScope, bill_id: int, reason: Optional[str] = None) -> Bill:
    scope.require(DOCUMENT_POST)
    bill = get_bill(scope, bill_id)
    reversal_id = _void(scope, bill, reason)
    enqueue_outbox(
        BILLING_BILL_VOIDED,
        {**_document_payload(bill), "reversal_id": reversal_id},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "bill.voided",
        "bill",
        bill.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"reason": reason, "reversal_id": reversal_id},
    )
    db.session.commit()
    return bill


def get_invoice(scope: TenantScope, invoice_id: int) -> Invoice:
    invoice = Invoice.query.filter_by(id=invoice_id, tenant_id=scope.tenant_id, company_id=scope.require_company()).first()
    if invoice is None:
        raise DomainError("document_not_found", "Invoice not found")
    return invoice


def get_bill(scope: TenantScope, bill_id: int) -> Bill:
    bill = Bill.query.filter_by(id=bill_id, tenant_id=scope.tenant_id, company_id=scope.require_company()).first()
    if bill is None:
        raise DomainError("document_not_found", "Bill not found")
    return bill


def list_invoices(scope: TenantScope, status: Optional[str] = None):
    query = Invoice.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if status:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())


def list_bills(scope: TenantScope, status: Optional[str] = None):
    query = Bill.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if status:
        query = query.filter(Bill.status == status)
    return query.order_by(Bill.bill_date.desc(), Bill.id.desc())
