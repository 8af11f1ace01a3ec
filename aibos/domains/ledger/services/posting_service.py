"""General-ledger posting: validation, FX conversion and the journal lifecycle."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from flask import current_app, has_app_context

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import (
    JOURNAL_APPROVE,
    JOURNAL_CREATE,
    JOURNAL_POST,
    JOURNAL_REVERSE,
)
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company, lock_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import MAX_AMOUNT, ZERO, parse_amount, quantize_rate, to_decimal
from aibos.domains.fx.services.currency_service import decimal_places, require_currency
from aibos.domains.fx.services.rate_service import SOURCE_IDENTITY, SOURCE_MANUAL, get_rate
from aibos.domains.ledger.constants import (
    JOURNAL_DRAFT,
    JOURNAL_PENDING_APPROVAL,
    JOURNAL_POSTED,
    JOURNAL_REVERSED,
)
from aibos.domains.ledger.events import (
    LEDGER_JOURNAL_APPROVED,
    LEDGER_JOURNAL_CREATED,
    LEDGER_JOURNAL_POSTED,
    LEDGER_JOURNAL_REVERSED,
    LEDGER_JOURNAL_SUBMITTED,
)
from aibos.domains.ledger.models.ledger_models import Account, Journal, JournalLine
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

MAX_JOURNAL_LINES = 100
MAX_DESCRIPTION_LENGTH = 512
DEFAULT_BALANCE_TOLERANCE = Decimal("0.01")
SOURCE_REVERSAL = "reversal"

_currency_shape = re.compile(r"^[A-Z]{3}$")


@dataclass
class PreparedLine:
    account_id: int
    debit: Decimal
    credit: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    base_debit: Decimal = ZERO
    base_credit: Decimal = ZERO


@dataclass
class PreparedJournal:
    """Outcome of :func:`validate_journal`, ready to be persisted."""

    company: Company
    journal_date: date
    currency: str
    exchange_rate: Decimal
    rate_source: str
    lines: List[PreparedLine] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    base_total_debit: Decimal = ZERO
    base_total_credit: Decimal = ZERO
    rate_is_stale: bool = False


def _balance_tolerance() -> Decimal:
    if not has_app_context():
        return DEFAULT_BALANCE_TOLERANCE
    return to_decimal(current_app.config.get("BALANCE_TOLERANCE", DEFAULT_BALANCE_TOLERANCE))


def _today() -> date:
    return datetime.utcnow().date()


def _coerce_date(value, field_name: str = "journal_date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return _today()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise DomainError("validation_error", f"{field_name} must be YYYY-MM-DD", {"field": field_name})


def _line_amount(raw, key: str, index: int) -> Decimal:
    try:
        return parse_amount(raw.get(key))
    except ValueError as exc:
        if str(exc) == "amount_out_of_range":
            raise DomainError(
                "amount_out_of_range",
                f"Line {index}: {key} exceeds {MAX_AMOUNT}",
                {"line": index, "max_amount": str(MAX_AMOUNT)},
            )
        raise DomainError("validation_error", f"Line {index}: {key} is not a number", {"line": index})


def normalize_lines(lines) -> Tuple[List[PreparedLine], Decimal, Decimal]:
    """Validate line shape and amounts; accepts ``debit``/``credit`` or ``dc``/``amount``."""
    if not lines or len(lines) < 2:
        raise DomainError("insufficient_lines", "A journal needs at least two lines")
    if len(lines) > MAX_JOURNAL_LINES:
        raise DomainError(
            "too_many_lines",
            f"A journal may have at most {MAX_JOURNAL_LINES} lines",
            {"max_lines": MAX_JOURNAL_LINES, "lines": len(lines)},
        )

    prepared: List[PreparedLine] = []
    total_debit = ZERO
    total_credit = ZERO
    for index, raw in enumerate(lines, start=1):
        if not isinstance(raw, dict):
            raw = dict(raw)
        try:
            account_id = int(raw.get("account_id"))
        except (TypeError, ValueError):
            raise DomainError("validation_error", f"Line {index}: account_id is required", {"line": index})

        if raw.get("dc") is not None or raw.get("amount") is not None:
            amount = _line_amount(raw, "amount", index)
            dc = str(raw.get("dc") or "").upper()
            if dc not in {"D", "C"}:
                raise DomainError("validation_error", f"Line {index}: dc must be D or C", {"line": index})
            debit = amount if dc == "D" else ZERO
            credit = amount if dc == "C" else ZERO
        else:
            debit = _line_amount(raw, "debit", index)
            credit = _line_amount(raw, "credit", index)

        if debit < 0 or credit < 0:
            raise DomainError("negative_amount", f"Line {index}: amounts cannot be negative", {"line": index})
        if debit > 0 and credit > 0:
            raise DomainError(
                "invalid_line_amounts", f"Line {index}: use either debit or credit, not both", {"line": index}
            )
        if debit == 0 and credit == 0:
            raise DomainError("zero_amounts", f"Line {index}: amount must be non-zero", {"line": index})

        total_debit += debit
        total_credit += credit
        prepared.append(
            PreparedLine(
                account_id=account_id,
                debit=debit,
                credit=credit,
                description=(raw.get("description") or "").strip() or None,
                reference=(raw.get("reference") or "").strip() or None,
            )
        )
    return prepared, total_debit, total_credit


def _check_accounts(company: Company, lines: List[PreparedLine], currency: str) -> None:
    ids = {line.account_id for line in lines}
    accounts = {
        a.id: a
        for a in Account.query.filter(
            Account.tenant_id == company.tenant_id,
            Account.company_id == company.id,
            Account.id.in_(ids),
        ).all()
    }
    missing = sorted(ids - set(accounts))
    if missing:
        raise DomainError("account_not_found", "Accounts not found in this company", {"account_ids": missing})
    for account_id in sorted(ids):
        account = accounts[account_id]
        if not account.is_active:
            raise DomainError("inactive_account", f"Account {account.code} is inactive", {"account_id": account_id})
        if not account.allow_posting:
            raise DomainError(
                "account_not_postable", f"Account {account.code} does not accept postings", {"account_id": account_id}
            )
        if account.currency and account.currency != currency:
            raise DomainError(
                "currency_mismatch",
                f"Account {account.code} only accepts {account.currency}",
                {"account_id": account_id, "account_currency": account.currency, "journal_currency": currency},
            )


def assert_period_accepts(company: Company, on: date) -> None:
    """Raise ``period_closed`` when ``on`` falls in a period that refuses postings."""
    from aibos.domains.periods.services.period_service import find_company_period, period_accepts_postings

    period = find_company_period(company.tenant_id, company.id, on)
    if period is not None and not period_accepts_postings(period):
        raise DomainError(
            "period_closed",
            f"Period {period.name} is not open for postings",
            {"period_id": period.id, "status": period.status, "date": on.isoformat()},
        )


def _drift_target(lines: List[PreparedLine], side: str) -> PreparedLine:
    """Largest line on ``side`` by base amount, or by journal amount when all base amounts rounded to zero."""
    candidates = [l for l in lines if getattr(l, side) > 0]
    return max(candidates, key=lambda l: (getattr(l, f"base_{side}"), getattr(l, side)))


def _apply_base_amounts(prepared: PreparedJournal, base_places: int) -> None:
    rate = prepared.exchange_rate
    for line in prepared.lines:
        try:
            line.base_debit = parse_amount(line.debit * rate, base_places)
            line.base_credit = parse_amount(line.credit * rate, base_places)
        except ValueError:
            raise DomainError(
                "amount_out_of_range",
                "Converted amount exceeds the largest storable amount",
                {"exchange_rate": str(rate), "max_amount": str(MAX_AMOUNT)},
            )

    base_debit = sum((line.base_debit for line in prepared.lines), ZERO)
    base_credit = sum((line.base_credit for line in prepared.lines), ZERO)
    drift = base_debit - base_credit
    if drift > 0:
        _drift_target(prepared.lines, "credit").base_credit += drift
        base_credit += drift
    elif drift < 0:
        _drift_target(prepared.lines, "debit").base_debit += -drift
        base_debit += -drift
    if drift:
        logger.debug("Absorbed %s base-currency rounding drift", drift)
    if base_debit > MAX_AMOUNT:
        raise DomainError(
            "amount_out_of_range",
            "Converted total exceeds the largest storable amount",
            {"base_total": str(base_debit), "max_amount": str(MAX_AMOUNT)},
        )
    prepared.base_total_debit = base_debit
    prepared.base_total_credit = base_credit


def validate_journal(scope: TenantScope, company: Company, payload: dict, authorize: bool = True) -> PreparedJournal:
    """Run the posting checks in order and compute base-currency amounts.

    Order: segregation of duties, line shape, balance, currency, date,
    accounts, period, then conversion into the company's base currency.
    """
    if authorize and not scope.can(JOURNAL_CREATE):
        raise DomainError(
            "sod_violation",
            f"Role '{scope.role}' may not create journals",
            {"role": scope.role, "permission": JOURNAL_CREATE},
        )

    lines, total_debit, total_credit = normalize_lines(payload.get("lines"))

    difference = (total_debit - total_credit).copy_abs()
    if difference > _balance_tolerance():
        raise DomainError(
            "unbalanced_journal",
            "Debits and credits do not balance",
            {
                "total_debit": str(total_debit),
                "total_credit": str(total_credit),
                "difference": str(difference),
            },
        )

    currency = str(payload.get("currency") or company.base_currency).strip().upper()
    if not _currency_shape.match(currency):
        raise DomainError("invalid_currency", f"'{currency}' is not an ISO-4217 code", {"currency": currency})
    require_currency(currency)

    journal_date = _coerce_date(payload.get("journal_date"))
    if journal_date > _today():
        raise DomainError(
            "future_date", "Journal date cannot be in the future", {"journal_date": journal_date.isoformat()}
        )

    _check_accounts(company, lines, currency)
    assert_period_accepts(company, journal_date)

    prepared = PreparedJournal(
        company=company,
        journal_date=journal_date,
        currency=currency,
        exchange_rate=Decimal("1"),
        rate_source=SOURCE_IDENTITY,
        lines=lines,
        total_debit=total_debit,
        total_credit=total_credit,
    )
    if currency != company.base_currency:
        supplied = payload.get("exchange_rate")
        if supplied is not None:
            try:
                rate = quantize_rate(supplied)
            except ValueError:
                rate = ZERO
            if rate <= 0:
                raise DomainError("invalid_rate", "Exchange rate must be positive", {"exchange_rate": str(supplied)})
            prepared.exchange_rate = rate
            prepared.rate_source = SOURCE_MANUAL
        else:
            quote = get_rate(
                currency,
                company.base_currency,
                as_of=journal_date,
                allow_stale=bool(payload.get("allow_stale_rate")),
                tenant_id=company.tenant_id,
            )
            prepared.exchange_rate = quote.rate
            prepared.rate_source = quote.source
            prepared.rate_is_stale = quote.is_stale
    _apply_base_amounts(prepared, decimal_places(company.base_currency))
    return prepared


def next_journal_number(company_id: int, journal_date: date) -> str:
    """Next sequential number for the month; holds the company row lock."""
    lock_company(company_id)
    prefix = f"JRN-{journal_date:%Y%m}-"
    numbers = (
        db.session.query(Journal.journal_number)
        .filter(Journal.company_id == company_id, Journal.journal_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (number,) in numbers:
        tail = number[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}{highest + 1:04d}"


def _journal_payload(journal: Journal) -> dict:
    return {
        "journal_id": journal.id,
        "company_id": journal.company_id,
        "journal_number": journal.journal_number,
    }


def stage_journal(
    scope: TenantScope,
    company: Company,
    payload: dict,
    source: str = "manual",
    authorize: bool = True,
) -> Journal:
    """Validate and add a draft journal to the session without committing."""
    prepared = validate_journal(scope, company, payload, authorize=authorize)

    description = (payload.get("description") or "").strip() or None
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        raise DomainError("validation_error", "Description is too long", {"max_length": MAX_DESCRIPTION_LENGTH})

    number = (payload.get("journal_number") or "").strip()
    if number:
        lock_company(company.id)
        if Journal.query.filter_by(company_id=company.id, journal_number=number).first():
            raise DomainError("duplicate_journal_number", f"Journal number '{number}' already exists")
    else:
        number = next_journal_number(company.id, prepared.journal_date)

    journal = Journal(
        tenant_id=company.tenant_id,
        company_id=company.id,
        journal_number=number,
        description=description,
        reference=(payload.get("reference") or "").strip() or None,
        source=source,
        journal_date=prepared.journal_date,
        currency=prepared.currency,
        exchange_rate=prepared.exchange_rate,
        rate_source=prepared.rate_source,
        total_debit=prepared.total_debit,
        total_credit=prepared.total_credit,
        base_total_debit=prepared.base_total_debit,
        base_total_credit=prepared.base_total_credit,
        status=JOURNAL_DRAFT,
        auto_reverse=bool(payload.get("auto_reverse")),
        created_by=scope.user_id,
    )
    for number_, line in enumerate(prepared.lines, start=1):
        journal.lines.append(
            JournalLine(
                line_number=number_,
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                base_debit=line.base_debit,
                base_credit=line.base_credit,
                description=line.description,
                reference=line.reference,
            )
        )
    db.session.add(journal)
    db.session.flush()

    enqueue_outbox(
        LEDGER_JOURNAL_CREATED,
        {
            **_journal_payload(journal),
            "currency": journal.currency,
            "total_debit": journal.total_debit,
            "line_count": len(journal.lines),
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "journal.created",
        "journal",
        journal.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={
            "journal_number": journal.journal_number,
            "currency": journal.currency,
            "exchange_rate": str(journal.exchange_rate),
            "rate_source": journal.rate_source,
            "rate_is_stale": prepared.rate_is_stale,
            "base_total": str(journal.base_total_debit),
        },
    )
    return journal


def create_journal(scope: TenantScope, payload: dict, post: bool = False) -> Journal:
    """Create a draft journal; with ``post`` it is posted in the same transaction."""
    if post:
        scope.require(JOURNAL_POST)
    company = current_company(scope)
    journal = stage_journal(scope, company, payload)
    if post:
        stage_posting(scope, company, journal)
    db.session.commit()
    logger.info("Journal %s created in company %s", journal.journal_number, company.id)
    return journal


def _mark_posted(scope: TenantScope, journal: Journal) -> None:
    journal.status = JOURNAL_POSTED
    journal.posted_by = scope.user_id
    journal.posted_at = datetime.utcnow()
    enqueue_outbox(
        LEDGER_JOURNAL_POSTED,
        {
            **_journal_payload(journal),
            "journal_date": journal.journal_date,
            "currency": journal.currency,
            "base_total_debit": journal.base_total_debit,
            "base_total_credit": journal.base_total_credit,
            "source": journal.source,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "journal.posted",
        "journal",
        journal.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"journal_number": journal.journal_number, "base_total": str(journal.base_total_debit)},
    )


def stage_posting(scope: TenantScope, company: Company, journal: Journal, bypass_approval: bool = False) -> Journal:
    """Move a draft to posted, or to pending approval past the company threshold."""
    if journal.status != JOURNAL_DRAFT:
        raise DomainError(
            "journal_not_editable", f"Journal is {journal.status}, only drafts can be posted", {"status": journal.status}
        )
    assert_period_accepts(company, journal.journal_date)

    threshold = company.approval_threshold
    if not bypass_approval and threshold is not None and to_decimal(journal.base_total_debit) >= threshold:
        journal.status = JOURNAL_PENDING_APPROVAL
        enqueue_outbox(
            LEDGER_JOURNAL_SUBMITTED,
            {**_journal_payload(journal), "base_total": journal.base_total_debit, "threshold": threshold},
            user_id=scope.user_id,
            tenant_id=scope.tenant_id,
        )
        record_audit(
            "journal.submitted",
            "journal",
            journal.id,
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            details={"base_total": str(journal.base_total_debit), "threshold": str(threshold)},
        )
        return journal

    _mark_posted(scope, journal)
    return journal


def post_journal(scope: TenantScope, journal_id: int) -> Journal:
    scope.require(JOURNAL_POST)
    journal = get_journal(scope, journal_id)
    stage_posting(scope, current_company(scope), journal)
    db.session.commit()
    logger.info("Journal %s moved to %s", journal.journal_number, journal.status)
    return journal


def approve_journal(scope: TenantScope, journal_id: int) -> Journal:
    """Approve a pending journal; the approver must not be its creator."""
    scope.require(JOURNAL_APPROVE)
    journal = get_journal(scope, journal_id)
    if journal.status != JOURNAL_PENDING_APPROVAL:
        raise DomainError("journal_not_pending", "Journal is not awaiting approval", {"status": journal.status})
    if journal.created_by == scope.user_id:
        record_audit(
            "journal.approval_denied",
            "journal",
            journal.id,
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            category="authorization",
            severity="high",
            outcome="failure",
            details={"reason": "creator_cannot_approve"},
        )
        db.session.commit()
        raise DomainError("sod_violation", "The creator of a journal cannot approve it")
    assert_period_accepts(current_company(scope), journal.journal_date)

    journal.approved_by = scope.user_id
    enqueue_outbox(
        LEDGER_JOURNAL_APPROVED,
        {**_journal_payload(journal), "approved_by": scope.user_id},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "journal.approved",
        "journal",
        journal.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="authorization",
        severity="medium",
        details={"created_by": journal.created_by},
    )
    _mark_posted(scope, journal)
    db.session.commit()
    return journal


def stage_reversal(
    scope: TenantScope,
    company: Company,
    journal: Journal,
    reversal_date: Optional[date] = None,
    reason: Optional[str] = None,
    allow_future: bool = False,
) -> Journal:
    """Add a posted mirror of ``journal`` and mark the original reversed.

    ``allow_future`` lets period close date reversals on the next period's first day.
    """
    if journal.status == JOURNAL_REVERSED or Journal.query.filter_by(reversal_of_id=journal.id).first():
        raise DomainError("already_reversed", f"Journal {journal.journal_number} was already reversed")
    if journal.status != JOURNAL_POSTED:
        raise DomainError("journal_not_posted", "Only posted journals can be reversed", {"status": journal.status})

    reversal_date = reversal_date or _today()
    if reversal_date > _today() and not allow_future:
        raise DomainError(
            "future_date", "Reversal date cannot be in the future", {"reversal_date": reversal_date.isoformat()}
        )
    assert_period_accepts(company, reversal_date)

    reason = (reason or "").strip() or None
    reversal = Journal(
        tenant_id=journal.tenant_id,
        company_id=journal.company_id,
        journal_number=next_journal_number(journal.company_id, reversal_date),
        description=f"Reversal of {journal.journal_number}" + (f": {reason}" if reason else ""),
        reference=journal.reference,
        source=SOURCE_REVERSAL,
        journal_date=reversal_date,
        currency=journal.currency,
        exchange_rate=journal.exchange_rate,
        rate_source=journal.rate_source,
        total_debit=journal.total_credit,
        total_credit=journal.total_debit,
        base_total_debit=journal.base_total_credit,
        base_total_credit=journal.base_total_debit,
        status=JOURNAL_DRAFT,
        reversal_of_id=journal.id,
        created_by=scope.user_id,
    )
    for line in journal.lines:
        reversal.lines.append(
            JournalLine(
                line_number=line.line_number,
                account_id=line.account_id,
                debit=line.credit,
                credit=line.debit,
                base_debit=line.base_credit,
                base_credit=line.base_debit,
                description=line.description,
                reference=line.reference,
            )
        )
    db.session.add(reversal)
    db.session.flush()

    journal.status = JOURNAL_REVERSED
    _mark_posted(scope, reversal)
    enqueue_outbox(
        LEDGER_JOURNAL_REVERSED,
        {
            **_journal_payload(journal),
            "reversal_id": reversal.id,
            "reversal_date": reversal_date,
            "reason": reason,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "journal.reversed",
        "journal",
        journal.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"reversal_id": reversal.id, "reversal_number": reversal.journal_number, "reason": reason},
    )
    return reversal


def reverse_journal(
    scope: TenantScope,
    journal_id: int,
    reversal_date: Optional[date] = None,
    reason: Optional[str] = None,
) -> Journal:
    scope.require(JOURNAL_REVERSE)
    journal = get_journal(scope, journal_id)
    reversal = stage_reversal(scope, current_company(scope), journal, reversal_date, reason)
    db.session.commit()
    logger.info("Journal %s reversed by %s", journal.journal_number, reversal.journal_number)
    return reversal


def get_journal(scope: TenantScope, journal_id: int) -> Journal:
    journal = Journal.query.filter_by(
        id=journal_id, tenant_id=scope.tenant_id, company_id=scope.require_company()
    ).first()
    if journal is None:
        raise DomainError("journal_not_found", "Journal not found")
    return journal


def list_journals(
    scope: TenantScope,
    status: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_id: Optional[int] = None,
):
    """Query of the company's journals, newest first; callers paginate."""
    query = Journal.query.filter(
        Journal.tenant_id == scope.tenant_id,
        Journal.company_id == scope.require_company(),
    )
    if status:
        query = query.filter(Journal.status == status)
    if from_date:
        query = query.filter(Journal.journal_date >= from_date)
    if to_date:
        query = query.filter(Journal.journal_date <= to_date)
    if account_id:
        query = query.filter(Journal.lines.any(JournalLine.account_id == account_id))
    return query.order_by(Journal.journal_date.desc(), Journal.id.desc())
