"""Customer receipts and supplier payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import PAYMENT_CREATE
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import MAX_AMOUNT, ZERO, parse_amount, to_decimal
from aibos.domains.billing.events import BILLING_PAYMENT_RECORDED
from aibos.domains.billing.models.billing_models import (
    DIRECTION_MADE,
    DIRECTION_RECEIVED,
    DOC_PAID,
    DOC_PARTIALLY_PAID,
    DOCUMENT_BILL,
    DOCUMENT_INVOICE,
    PAYABLE_STATUSES,
    Bill,
    Invoice,
    Payment,
    PaymentAllocation,
)
from aibos.domains.ledger.constants import CASH_SUBTYPES
from aibos.domains.ledger.models.ledger_models import Account
from aibos.domains.ledger.services.posting_service import stage_journal, stage_posting
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

_DOCUMENT_FOR_DIRECTION = {DIRECTION_RECEIVED: DOCUMENT_INVOICE, DIRECTION_MADE: DOCUMENT_BILL}

# One journal line per allocation plus the bank line.
MAX_ALLOCATIONS = 50

Document = Union[Invoice, Bill]


@dataclass
class _Allocation:
    document: Document
    amount: Decimal


def _positive_amount(value, field_name: str) -> Decimal:
    try:
        amount = parse_amount(value)
    except ValueError as exc:
        if str(exc) == "amount_out_of_range":
            raise DomainError(
                "amount_out_of_range",
                f"{field_name} exceeds {MAX_AMOUNT}",
                {"field": field_name, "max_amount": str(MAX_AMOUNT)},
            )
        raise DomainError("validation_error", f"{field_name} is not a number", {"field": field_name})
    if amount <= 0:
        raise DomainError("validation_error", "Payment amount must be positive", {"field": field_name})
    return amount


def _payable_document(scope: TenantScope, document_type: str, document_id: int) -> Document:
    """Load and row-lock a document so concurrent payments cannot overpay it."""
    model = Invoice if document_type == DOCUMENT_INVOICE else Bill
    document = (
        model.query.filter_by(id=document_id, tenant_id=scope.tenant_id, company_id=scope.require_company())
        .with_for_update()
        .first()
    )
    if document is None:
        raise DomainError("document_not_found", f"{document_type.title()} not found", {"document_id": document_id})
    if document.status not in PAYABLE_STATUSES:
        raise DomainError(
            "document_not_payable",
            f"A {document.status} {document_type} cannot take payments",
            {"status": document.status, "document_id": document.id},
        )
    return document


def _resolve_allocations(
    scope: TenantScope,
    document_type: str,
    document_id: Optional[int],
    amount,
    allocations: Optional[list],
) -> Tuple[Decimal, List[_Allocation]]:
    if allocations is None:
        if document_id is None:
            raise DomainError("validation_error", "document_id or allocations is required", {"field": "document_id"})
        allocations = [{"document_id": document_id, "amount": amount}]
    if not allocations:
        raise DomainError("validation_error", "At least one allocation is required", {"field": "allocations"})
    if len(allocations) > MAX_ALLOCATIONS:
        raise DomainError(
            "validation_error", f"At most {MAX_ALLOCATIONS} allocations", {"field": "allocations"}
        )

    resolved: List[_Allocation] = []
    seen = set()
    for index, raw in enumerate(allocations, start=1):
        try:
            allocated_id = int(raw.get("document_id"))
        except (TypeError, ValueError):
            raise DomainError(
                "validation_error", f"Allocation {index}: document_id is required", {"allocation": index}
            )
        if allocated_id in seen:
            raise DomainError(
                "validation_error",
                f"Allocation {index}: document {allocated_id} is listed twice",
                {"allocation": index},
            )
        seen.add(allocated_id)

        value = _positive_amount(raw.get("amount"), "amount")
        document = _payable_document(scope, document_type, allocated_id)
        outstanding = document.outstanding
        if value > outstanding:
            raise DomainError(
                "overpayment",
                "Payment exceeds the outstanding balance",
                {"amount": str(value), "outstanding": str(outstanding), "document_id": document.id},
            )
        resolved.append(_Allocation(document, value))

    first = resolved[0].document
    for allocation in resolved[1:]:
        other = allocation.document
        if other.currency != first.currency or to_decimal(other.exchange_rate) != to_decimal(first.exchange_rate):
            raise DomainError(
                "currency_mismatch",
                "Documents settled together must share currency and exchange rate",
                {"document_id": other.id, "currency": other.currency, "expected_currency": first.currency},
            )

    allocated = sum((a.amount for a in resolved), ZERO)
    if amount is None:
        return allocated, resolved
    total = _positive_amount(amount, "amount")
    if total != allocated:
        raise DomainError(
            "allocation_mismatch",
            "Allocations must add up to the payment amount",
            {"amount": str(total), "allocated": str(allocated)},
        )
    return total, resolved


def _bank_account(scope: TenantScope, company: Company, bank_account_id: int) -> Account:
    bank = Account.query.filter_by(id=bank_account_id, tenant_id=scope.tenant_id, company_id=company.id).first()
    if bank is None:
        raise DomainError("account_not_found", "Bank account not found", {"account_id": bank_account_id})
    if bank.account_subtype not in CASH_SUBTYPES:
        raise DomainError("validation_error", "Payments must use a cash or bank account", {"account_id": bank.id})
    return bank


def _journal_lines(direction: str, bank: Account, value: Decimal, allocations: List[_Allocation]) -> List[dict]:
    """Receipts: Dr bank / Cr receivable per invoice. Payments: Dr payable per bill / Cr bank."""
    if direction == DIRECTION_RECEIVED:
        lines = [{"account_id": bank.id, "debit": value}]
        lines.extend(
            {
                "account_id": a.document.receivable_account_id,
                "credit": a.amount,
                "description": a.document.document_number,
            }
            for a in allocations
        )
        return lines
    lines = [
        {"account_id": a.document.payable_account_id, "debit": a.amount, "description": a.document.document_number}
        for a in allocations
    ]
    lines.append({"account_id": bank.id, "credit": value})
    return lines


def stage_payment(
    scope: TenantScope,
    direction: str,
    document_id: Optional[int],
    amount,
    bank_account_id: int,
    payment_date: Optional[date] = None,
    reference: Optional[str] = None,
    allocations: Optional[list] = None,
) -> Payment:
    """Validate and book a payment on the session without committing."""
    scope.require(PAYMENT_CREATE)
    if direction not in _DOCUMENT_FOR_DIRECTION:
        raise DomainError("validation_error", "direction must be 'received' or 'made'", {"field": "direction"})
    document_type = _DOCUMENT_FOR_DIRECTION[direction]
    value, resolved = _resolve_allocations(scope, document_type, document_id, amount, allocations)

    company = current_company(scope)
    bank = _bank_account(scope, company, bank_account_id)
    first = resolved[0].document
    single = len(resolved) == 1

    payment_date = payment_date or datetime.utcnow().date()
    if single:
        description = f"Payment {direction} for {first.document_number}"
    else:
        description = f"Payment {direction} for {len(resolved)} {document_type}s"
    journal = stage_journal(
        scope,
        company,
        {
            "journal_date": payment_date,
            "currency": first.currency,
            "exchange_rate": first.exchange_rate,
            "description": description,
            "reference": reference or (first.document_number if single else None),
            "lines": _journal_lines(direction, bank, value, resolved),
        },
        source="payment",
        authorize=False,
    )
    stage_posting(scope, company, journal, bypass_approval=True)

    payment = Payment(
        tenant_id=scope.tenant_id,
        company_id=company.id,
        direction=direction,
        payment_date=payment_date,
        amount=value,
        currency=first.currency,
        bank_account_id=bank.id,
        document_type=document_type,
        document_id=first.id if single else None,
        reference=reference,
        journal_id=journal.id,
        created_by=scope.user_id,
    )
    for allocation in resolved:
        document = allocation.document
        payment.allocations.append(
            PaymentAllocation(document_type=document_type, document_id=document.id, amount=allocation.amount)
        )
        document.paid_amount = to_decimal(document.paid_amount) + allocation.amount
        document.status = DOC_PAID if document.outstanding <= Decimal("0") else DOC_PARTIALLY_PAID
    db.session.add(payment)
    db.session.flush()

    enqueue_outbox(
        BILLING_PAYMENT_RECORDED,
        {
            "payment_id": payment.id,
            "direction": direction,
            "document_type": document_type,
            "document_id": payment.document_id,
            "amount": value,
            "currency": payment.currency,
            "journal_id": journal.id,
            "document_status": first.status if single else None,
            "allocations": [
                {"document_id": a.document.id, "amount": a.amount, "document_status": a.document.status}
                for a in resolved
            ],
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "payment.recorded",
        "payment",
        payment.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={
            "documents": [f"{document_type}:{a.document.id}" for a in resolved],
            "amount": str(value),
            "statuses": [a.document.status for a in resolved],
        },
    )
    return payment


def record_payment(
    scope: TenantScope,
    direction: str,
    document_id: Optional[int],
    amount,
    bank_account_id: int,
    payment_date: Optional[date] = None,
    reference: Optional[str] = None,
    allocations: Optional[list] = None,
) -> Payment:
    """Settle invoices (``received``) or bills (``made``) through the GL.

    Pass ``document_id`` and ``amount`` for one document, or ``allocations``
    (``[{"document_id", "amount"}]``) to split one payment across several.
    Allocations must add up to ``amount`` when both are given. The payment is
    booked in the documents' currency at their rate.
    """
    payment = stage_payment(
        scope,
        direction,
        document_id,
        amount,
        bank_account_id,
        payment_date=payment_date,
        reference=reference,
        allocations=allocations,
    )
    db.session.commit()
    logger.info(
        "Payment %s of %s %s recorded against %s document(s)",
        payment.id,
        payment.amount,
        payment.currency,
        len(payment.allocations),
    )
    return payment


def get_payment(scope: TenantScope, payment_id: int) -> Payment:
    payment = Payment.query.filter_by(id=payment_id, tenant_id=scope.tenant_id, company_id=scope.require_company()).first()
    if payment is None:
        raise DomainError("not_found", "Payment not found")
    return payment


def list_payments(scope: TenantScope, document_type: Optional[str] = None, document_id: Optional[int] = None):
    query = Payment.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if document_type:
        query = query.filter(Payment.document_type == document_type)
    if document_id:
        query = query.filter(Payment.allocations.any(PaymentAllocation.document_id == document_id))
    return query.order_by(Payment.payment_date.desc(), Payment.id.desc())
