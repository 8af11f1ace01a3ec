"""Matching imported bank transactions to invoices, bills and payments.

Each candidate is scored out of 100 from four weighted signals: amount,
date proximity, reference and description similarity. Outgoing transactions
only match bills and outgoing payments, incoming ones only invoices and
receipts. A recorded payment scoring at or above the auto threshold is
linked straight away. Everything else above the suggest threshold is stored
as a suggestion for a user to confirm; confirming an invoice or bill
suggestion records the payment through the GL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from difflib import SequenceMatcher
from typing import List, Optional

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import PAYMENT_CREATE
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.domains.billing.events import BILLING_BANK_TRANSACTION_MATCHED
from aibos.domains.billing.models.bank_models import (
    TXN_MATCHED,
    TXN_SUGGESTED,
    TXN_UNMATCHED,
    BankTransaction,
)
from aibos.domains.billing.models.billing_models import (
    DIRECTION_MADE,
    DIRECTION_RECEIVED,
    DOCUMENT_BILL,
    DOCUMENT_INVOICE,
    PAYABLE_STATUSES,
    Bill,
    Invoice,
    Payment,
)
from aibos.domains.billing.services.bank_import_service import get_statement
from aibos.domains.billing.services.payment_service import get_payment, stage_payment
from aibos.domains.ledger.models.ledger_models import Account
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

MATCH_PAYMENT = "payment"
MATCH_TYPES = (DOCUMENT_INVOICE, DOCUMENT_BILL, MATCH_PAYMENT)


@dataclass(frozen=True)
class MatchConfig:
    auto_match_threshold: float = 90.0
    suggest_threshold: float = 70.0
    amount_tolerance: Decimal = Decimal("0.01")
    date_tolerance_days: int = 7
    amount_weight: float = 40.0
    date_weight: float = 20.0
    reference_weight: float = 25.0
    description_weight: float = 15.0
    description_similarity: float = 0.6

    @property
    def max_score(self) -> float:
        return self.amount_weight + self.date_weight + self.reference_weight + self.description_weight


@dataclass
class MatchCandidate:
    match_type: str
    match_id: int
    on: date
    amount: Decimal
    description: str
    outgoing: bool
    number: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class MatchScore:
    candidate: MatchCandidate
    confidence: float
    amount_difference: Decimal
    date_difference: int
    reasons: List[str] = field(default_factory=list)


def _similarity(left: str, right: str) -> float:
    left, right = (left or "").lower(), (right or "").lower()
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


def score_match(transaction: BankTransaction, candidate: MatchCandidate, config: MatchConfig) -> MatchScore:
    amount = transaction.amount
    amount_difference = (amount - candidate.amount).copy_abs()
    date_difference = abs((transaction.transaction_date - candidate.on).days)
    reasons: List[str] = []
    score = 0.0

    if amount_difference <= config.amount_tolerance:
        score += config.amount_weight
        reasons.append("Exact amount match")
    elif amount_difference <= candidate.amount * Decimal("0.01"):
        score += config.amount_weight * 0.8
        reasons.append("Close amount match (within 1%)")
    elif amount_difference <= candidate.amount * Decimal("0.05"):
        score += config.amount_weight * 0.5
        reasons.append("Approximate amount match (within 5%)")

    if date_difference <= 1:
        score += config.date_weight
        reasons.append("Same or next day")
    elif date_difference <= config.date_tolerance_days:
        score += config.date_weight * (1 - date_difference / config.date_tolerance_days)
        reasons.append(f"Within {date_difference} days")

    ours = (transaction.reference or "").lower()
    theirs = (candidate.reference or "").lower()
    number = (candidate.number or "").lower()
    if ours and theirs:
        if ours == theirs:
            score += config.reference_weight
            reasons.append("Exact reference match")
        elif ours in theirs or theirs in ours:
            score += config.reference_weight * 0.7
            reasons.append("Partial reference match")
    elif ours and number and (number in ours or ours in number):
        score += config.reference_weight * 0.8
        reasons.append("Reference matches document number")

    similarity = _similarity(transaction.description, candidate.description)
    if similarity >= config.description_similarity:
        score += config.description_weight * similarity
        reasons.append(f"Description similarity: {round(similarity * 100)}%")

    confidence = round(score / config.max_score * 100, 2) if config.max_score else 0.0
    return MatchScore(
        candidate=candidate,
        confidence=confidence,
        amount_difference=amount_difference,
        date_difference=date_difference,
        reasons=reasons,
    )


def _candidates(scope: TenantScope, bank: Account, currency: str) -> List[MatchCandidate]:
    company_id = scope.require_company()
    candidates: List[MatchCandidate] = []
    for invoice in Invoice.query.filter(
        Invoice.tenant_id == scope.tenant_id,
        Invoice.company_id == company_id,
        Invoice.currency == currency,
        Invoice.status.in_(sorted(PAYABLE_STATUSES)),
    ):
        candidates.append(
            MatchCandidate(
                match_type=DOCUMENT_INVOICE,
                match_id=invoice.id,
                on=invoice.due_date or invoice.invoice_date,
                amount=invoice.outstanding,
                description=invoice.customer_name,
                outgoing=False,
                number=invoice.invoice_number,
            )
        )
    for bill in Bill.query.filter(
        Bill.tenant_id == scope.tenant_id,
        Bill.company_id == company_id,
        Bill.currency == currency,
        Bill.status.in_(sorted(PAYABLE_STATUSES)),
    ):
        candidates.append(
            MatchCandidate(
                match_type=DOCUMENT_BILL,
                match_id=bill.id,
                on=bill.due_date or bill.bill_date,
                amount=bill.outstanding,
                description=bill.supplier_name,
                outgoing=True,
                number=bill.bill_number,
                reference=bill.supplier_reference,
            )
        )
    linked = db.select(BankTransaction.payment_id).where(BankTransaction.payment_id.isnot(None))
    for payment in Payment.query.filter(
        Payment.tenant_id == scope.tenant_id,
        Payment.company_id == company_id,
        Payment.bank_account_id == bank.id,
        Payment.id.notin_(linked),
    ):
        candidates.append(
            MatchCandidate(
                match_type=MATCH_PAYMENT,
                match_id=payment.id,
                on=payment.payment_date,
                amount=Decimal(payment.amount),
                description=payment.reference or "",
                outgoing=payment.direction == DIRECTION_MADE,
                reference=payment.reference,
            )
        )
    return candidates


def _link(scope: TenantScope, transaction: BankTransaction, payment: Payment, match_type: str, match_id: int) -> None:
    transaction.status = TXN_MATCHED
    transaction.payment_id = payment.id
    transaction.match_type = match_type
    transaction.match_id = match_id
    transaction.matched_by = scope.user_id
    transaction.matched_at = datetime.utcnow()
    enqueue_outbox(
        BILLING_BANK_TRANSACTION_MATCHED,
        {
            "transaction_id": transaction.id,
            "company_id": transaction.company_id,
            "match_type": match_type,
            "match_id": match_id,
            "payment_id": payment.id,
            "confidence": transaction.match_confidence,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "bank_transaction.matched",
        "bank_transaction",
        transaction.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={"match": f"{match_type}:{match_id}", "payment_id": payment.id},
    )


def _serialize_score(transaction: BankTransaction, score: MatchScore) -> dict:
    return {
        "transaction_id": transaction.id,
        "match_type": score.candidate.match_type,
        "match_id": score.candidate.match_id,
        "confidence": score.confidence,
        "amount_difference": str(score.amount_difference),
        "date_difference": score.date_difference,
        "reasons": score.reasons,
        "status": transaction.status,
    }


def auto_match(scope: TenantScope, import_id: int, config: Optional[MatchConfig] = None) -> dict:
    """Score every open transaction of an import and store links or suggestions."""
    scope.require(PAYMENT_CREATE)
    config = config or MatchConfig()
    statement = get_statement(scope, import_id)
    bank = db.session.get(Account, statement.bank_account_id)
    currency = bank.currency or current_company(scope).base_currency
    candidates = _candidates(scope, bank, currency)

    taken = set()
    matches: List[dict] = []
    automatic = suggested = unmatched = 0
    for transaction in statement.transactions:
        if transaction.status == TXN_MATCHED:
            continue
        best: Optional[MatchScore] = None
        for candidate in candidates:
            if candidate.outgoing != transaction.is_outgoing:
                continue
            if (candidate.match_type, candidate.match_id) in taken:
                continue
            score = score_match(transaction, candidate, config)
            if best is None or score.confidence > best.confidence:
                best = score

        if best is None or best.confidence < config.suggest_threshold:
            transaction.status = TXN_UNMATCHED
            transaction.match_type = None
            transaction.match_id = None
            transaction.match_confidence = None
            unmatched += 1
            continue

        candidate = best.candidate
        taken.add((candidate.match_type, candidate.match_id))
        transaction.match_type = candidate.match_type
        transaction.match_id = candidate.match_id
        transaction.match_confidence = Decimal(str(best.confidence))
        if candidate.match_type == MATCH_PAYMENT and best.confidence >= config.auto_match_threshold:
            _link(scope, transaction, db.session.get(Payment, candidate.match_id), MATCH_PAYMENT, candidate.match_id)
            automatic += 1
        else:
            transaction.status = TXN_SUGGESTED
            suggested += 1
        matches.append(_serialize_score(transaction, best))

    db.session.commit()
    confidences = [m["confidence"] for m in matches]
    logger.info(
        "Bank import %s matched: %s linked, %s suggested, %s unmatched", statement.id, automatic, suggested, unmatched
    )
    return {
        "import_id": statement.id,
        "matches": matches,
        "summary": {
            "total_transactions": automatic + suggested + unmatched,
            "automatic_matches": automatic,
            "suggested_matches": suggested,
            "unmatched": unmatched,
            "average_confidence": round(sum(confidences) / len(confidences), 2) if confidences else 0.0,
        },
    }


def get_transaction(scope: TenantScope, transaction_id: int) -> BankTransaction:
    transaction = (
        BankTransaction.query.filter_by(
            id=transaction_id, tenant_id=scope.tenant_id, company_id=scope.require_company()
        )
        .with_for_update()
        .first()
    )
    if transaction is None:
        raise DomainError("not_found", "Bank transaction not found")
    return transaction


def confirm_match(
    scope: TenantScope,
    transaction_id: int,
    match_type: Optional[str] = None,
    match_id: Optional[int] = None,
) -> BankTransaction:
    """Confirm the stored suggestion, or an explicit ``match_type``/``match_id``.

    Matching an invoice or bill records a payment for the transaction amount
    on the statement date; matching a recorded payment only links it.
    """
    scope.require(PAYMENT_CREATE)
    transaction = get_transaction(scope, transaction_id)
    if transaction.status == TXN_MATCHED:
        raise DomainError(
            "transaction_already_matched", "Bank transaction is already matched", {"payment_id": transaction.payment_id}
        )
    match_type = match_type or transaction.match_type
    match_id = match_id or transaction.match_id
    if match_type not in MATCH_TYPES or not match_id:
        raise DomainError(
            "validation_error", "Nothing to confirm; give match_type and match_id", {"field": "match_type"}
        )

    if match_type == MATCH_PAYMENT:
        payment = get_payment(scope, match_id)
        if (payment.direction == DIRECTION_MADE) != transaction.is_outgoing:
            raise DomainError("match_mismatch", "Payment direction does not match the bank transaction")
        if payment.bank_account_id != transaction.bank_account_id or Decimal(payment.amount) != transaction.amount:
            raise DomainError(
                "match_mismatch",
                "Payment amount or bank account differs from the bank transaction",
                {"payment_amount": str(payment.amount), "transaction_amount": str(transaction.amount)},
            )
        if BankTransaction.query.filter_by(payment_id=payment.id).first() is not None:
            raise DomainError("payment_already_matched", "Payment is already matched to a bank transaction")
    else:
        expected_outgoing = match_type == DOCUMENT_BILL
        if expected_outgoing != transaction.is_outgoing:
            raise DomainError(
                "match_mismatch",
                f"An {'outgoing' if transaction.is_outgoing else 'incoming'} transaction cannot settle a {match_type}",
            )
        payment = stage_payment(
            scope,
            DIRECTION_MADE if expected_outgoing else DIRECTION_RECEIVED,
            match_id,
            transaction.amount,
            transaction.bank_account_id,
            payment_date=transaction.transaction_date,
            reference=(transaction.reference or transaction.description)[:128],
        )

    _link(scope, transaction, payment, match_type, match_id)
    db.session.commit()
    logger.info("Bank transaction %s matched to %s %s", transaction.id, match_type, match_id)
    return transaction


def serialize_transaction(transaction: BankTransaction) -> dict:
    return {
        "id": transaction.id,
        "import_id": transaction.import_id,
        "bank_account_id": transaction.bank_account_id,
        "row_number": transaction.row_number,
        "transaction_date": transaction.transaction_date.isoformat(),
        "description": transaction.description,
        "reference": transaction.reference,
        "debit": str(transaction.debit),
        "credit": str(transaction.credit),
        "balance": str(transaction.balance) if transaction.balance is not None else None,
        "status": transaction.status,
        "match_type": transaction.match_type,
        "match_id": transaction.match_id,
        "match_confidence": str(transaction.match_confidence) if transaction.match_confidence is not None else None,
        "payment_id": transaction.payment_id,
    }
