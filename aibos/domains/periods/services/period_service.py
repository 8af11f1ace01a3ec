"""Fiscal calendar, period close and period locks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import PERIOD_CLOSE, PERIOD_REOPEN
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.constants import JOURNAL_DRAFT, JOURNAL_PENDING_APPROVAL, JOURNAL_POSTED
from aibos.domains.ledger.models.ledger_models import Journal
from aibos.domains.periods.events import (
    PERIOD_CLOSED,
    PERIOD_LOCKED,
    PERIOD_REOPENED,
    PERIODS_GENERATED,
)
from aibos.domains.periods.models.period_models import (
    LOCK_FULL,
    LOCK_POSTING,
    LOCK_TYPES,
    PERIOD_CLOSED as STATUS_CLOSED,
    PERIOD_LOCKED as STATUS_LOCKED,
    PERIOD_OPEN as STATUS_OPEN,
    POSTING_LOCK_TYPES,
    FiscalPeriod,
    PeriodLock,
)
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

MIN_FISCAL_YEAR = 1900
MAX_FISCAL_YEAR = 2999


@dataclass
class CloseValidation:
    errors: List[dict] = field(default_factory=list)
    warnings: List[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"ok": self.ok, "errors": self.errors, "warnings": self.warnings}


@dataclass
class CloseResult:
    period: FiscalPeriod
    forced: bool
    next_period_id: Optional[int]
    reversal_ids: List[int] = field(default_factory=list)
    validation: CloseValidation = field(default_factory=CloseValidation)


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    return date(start.year + month_index // 12, month_index % 12 + 1, 1)


def fiscal_year_bounds(fiscal_year_end: str, fiscal_year: int) -> Tuple[date, date]:
    """First and last day of ``fiscal_year``, which ends in that calendar year."""
    end_month = int(fiscal_year_end.split("-")[0])
    first_of_end_month = date(fiscal_year, end_month, 1)
    end = _add_months(first_of_end_month, 1) - timedelta(days=1)
    start = _add_months(first_of_end_month, -11)
    return start, end


def fiscal_year_for(company: Company, on: date) -> int:
    start, end = fiscal_year_bounds(company.fiscal_year_end, on.year)
    return on.year if on <= end else on.year + 1


def generate_periods_for_company(company: Company, fiscal_year: int, user_id: Optional[int] = None) -> List[FiscalPeriod]:
    """Stage and commit twelve monthly periods for one fiscal year."""
    if not MIN_FISCAL_YEAR <= fiscal_year <= MAX_FISCAL_YEAR:
        raise DomainError("validation_error", "fiscal_year is out of range", {"fiscal_year": fiscal_year})
    if FiscalPeriod.query.filter_by(company_id=company.id, fiscal_year=fiscal_year).first():
        raise DomainError(
            "periods_exist", f"Periods for fiscal year {fiscal_year} already exist", {"fiscal_year": fiscal_year}
        )

    start, _ = fiscal_year_bounds(company.fiscal_year_end, fiscal_year)
    periods: List[FiscalPeriod] = []
    for number in range(1, 13):
        period_start = _add_months(start, number - 1)
        period_end = _add_months(period_start, 1) - timedelta(days=1)
        period = FiscalPeriod(
            tenant_id=company.tenant_id,
            company_id=company.id,
            fiscal_year=fiscal_year,
            period_number=number,
            name=f"FY{fiscal_year} P{number:02d} ({period_start:%b %Y})",
            start_date=period_start,
            end_date=period_end,
            status=STATUS_OPEN,
        )
        db.session.add(period)
        periods.append(period)
    db.session.flush()

    enqueue_outbox(
        PERIODS_GENERATED,
        {"company_id": company.id, "fiscal_year": fiscal_year, "period_ids": [p.id for p in periods]},
        user_id=user_id,
        tenant_id=company.tenant_id,
    )
    record_audit(
        "periods.generated",
        "company",
        company.id,
        tenant_id=company.tenant_id,
        user_id=user_id,
        category="compliance",
        details={"fiscal_year": fiscal_year, "start": start, "periods": len(periods)},
    )
    db.session.commit()
    logger.info("Generated FY%s periods for company %s", fiscal_year, company.id)
    return periods


def generate_fiscal_year(scope: TenantScope, fiscal_year: int) -> List[FiscalPeriod]:
    scope.require(PERIOD_CLOSE)
    return generate_periods_for_company(current_company(scope), fiscal_year, user_id=scope.user_id)


def find_company_period(tenant_id: int, company_id: int, on: date) -> Optional[FiscalPeriod]:
    return FiscalPeriod.query.filter(
        FiscalPeriod.tenant_id == tenant_id,
        FiscalPeriod.company_id == company_id,
        FiscalPeriod.start_date <= on,
        FiscalPeriod.end_date >= on,
    ).first()


def find_period_for_date(scope: TenantScope, on: date) -> Optional[FiscalPeriod]:
    return find_company_period(scope.tenant_id, scope.require_company(), on)


def period_accepts_postings(period: FiscalPeriod) -> bool:
    if period.status != STATUS_OPEN:
        return False
    return not any(lock.lock_type in POSTING_LOCK_TYPES for lock in period.active_locks())


def get_period(scope: TenantScope, period_id: int) -> FiscalPeriod:
    period = FiscalPeriod.query.filter_by(
        id=period_id, tenant_id=scope.tenant_id, company_id=scope.require_company()
    ).first()
    if period is None:
        raise DomainError("period_not_found", "Period not found")
    return period


def list_periods(scope: TenantScope, fiscal_year: Optional[int] = None, status: Optional[str] = None) -> List[FiscalPeriod]:
    query = FiscalPeriod.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if fiscal_year:
        query = query.filter(FiscalPeriod.fiscal_year == fiscal_year)
    if status:
        query = query.filter(FiscalPeriod.status == status.upper())
    return query.order_by(FiscalPeriod.start_date).all()


def _journals_in(period: FiscalPeriod, statuses) -> List[Journal]:
    return (
        Journal.query.filter(
            Journal.tenant_id == period.tenant_id,
            Journal.company_id == period.company_id,
            Journal.journal_date >= period.start_date,
            Journal.journal_date <= period.end_date,
            Journal.status.in_(statuses),
        )
        .order_by(Journal.journal_date, Journal.id)
        .all()
    )


def _pending_auto_reversals(period: FiscalPeriod) -> List[Journal]:
    reversed_ids = {
        row.reversal_of_id
        for row in Journal.query.filter(
            Journal.company_id == period.company_id, Journal.reversal_of_id.isnot(None)
        ).all()
    }
    return [j for j in _journals_in(period, (JOURNAL_POSTED,)) if j.auto_reverse and j.id not in reversed_ids]


def validate_period_close(scope: TenantScope, period: FiscalPeriod) -> CloseValidation:
    """Errors block a close unless forced; warnings are informational."""
    from aibos.domains.reports.services.trial_balance_service import build_trial_balance

    result = CloseValidation()
    open_journals = _journals_in(period, (JOURNAL_DRAFT, JOURNAL_PENDING_APPROVAL))
    if open_journals:
        result.errors.append(
            {
                "check": "unposted_journals",
                "message": f"{len(open_journals)} draft or pending journals are dated in the period",
                "journal_ids": [j.id for j in open_journals],
            }
        )

    trial_balance = build_trial_balance(current_company(scope), period.end_date)
    if not trial_balance.is_balanced:
        result.errors.append(
            {
                "check": "trial_balance",
                "message": "Trial balance does not balance at period end",
                "total_debit": str(trial_balance.total_debit),
                "total_credit": str(trial_balance.total_credit),
            }
        )

    pending = _pending_auto_reversals(period)
    if pending:
        result.warnings.append(
            {
                "check": "auto_reverse",
                "message": f"{len(pending)} journals are flagged for automatic reversal",
                "journal_ids": [j.id for j in pending],
            }
        )
    return result


def _active_lock(period: FiscalPeriod, lock_type: str) -> Optional[PeriodLock]:
    for lock in period.active_locks():
        if lock.lock_type == lock_type:
            return lock
    return None


def close_period(
    scope: TenantScope,
    period_id: int,
    reason: Optional[str] = None,
    force: bool = False,
    generate_reversals: bool = False,
) -> CloseResult:
    from aibos.domains.ledger.services.posting_service import stage_reversal

    scope.require(PERIOD_CLOSE)
    period = get_period(scope, period_id)
    if period.status != STATUS_OPEN:
        raise DomainError("period_already_closed", f"Period {period.name} is {period.status}", {"status": period.status})

    validation = validate_period_close(scope, period)
    if not validation.ok and not force:
        record_audit(
            "period.close_rejected",
            "fiscal_period",
            period.id,
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            category="compliance",
            severity="medium",
            outcome="failure",
            details=validation.to_dict(),
        )
        db.session.commit()
        raise DomainError("period_close_validation_failed", "Period close checks failed", validation.to_dict())

    company = current_company(scope)
    next_start = period.end_date + timedelta(days=1)
    next_period = find_company_period(scope.tenant_id, company.id, next_start)

    reversal_ids: List[int] = []
    if generate_reversals:
        for journal in _pending_auto_reversals(period):
            reversal = stage_reversal(
                scope, company, journal, next_start, reason="automatic period-end reversal", allow_future=True
            )
            reversal_ids.append(reversal.id)

    period.status = STATUS_CLOSED
    period.closed_at = datetime.utcnow()
    period.closed_by = scope.user_id
    period.close_reason = reason
    if _active_lock(period, LOCK_POSTING) is None:
        db.session.add(PeriodLock(period=period, lock_type=LOCK_POSTING, locked_by=scope.user_id, reason=reason))
    db.session.flush()

    enqueue_outbox(
        PERIOD_CLOSED,
        {
            "period_id": period.id,
            "company_id": period.company_id,
            "forced": bool(force and not validation.ok),
            "reversal_ids": reversal_ids,
            "next_period_id": next_period.id if next_period else None,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "period.closed",
        "fiscal_period",
        period.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="compliance",
        severity="high" if not validation.ok else "medium",
        details={
            "reason": reason,
            "forced": bool(force and not validation.ok),
            "errors": validation.errors,
            "reversal_ids": reversal_ids,
        },
    )
    db.session.commit()
    logger.info("Closed period %s (%d reversals)", period.name, len(reversal_ids))
    return CloseResult(
        period=period,
        forced=bool(force and not validation.ok),
        next_period_id=next_period.id if next_period else None,
        reversal_ids=reversal_ids,
        validation=validation,
    )


def reopen_period(scope: TenantScope, period_id: int, reason: str) -> FiscalPeriod:
    scope.require(PERIOD_REOPEN)
    if not (reason or "").strip():
        raise DomainError("validation_error", "A reason is required to reopen a period", {"field": "reason"})
    period = get_period(scope, period_id)
    if period.status == STATUS_LOCKED:
        raise DomainError("period_locked", f"Period {period.name} is locked")
    if period.status == STATUS_OPEN:
        raise DomainError("period_already_open", f"Period {period.name} is already open")

    now = datetime.utcnow()
    for lock in period.active_locks():
        if lock.lock_type in POSTING_LOCK_TYPES:
            lock.is_active = False
            lock.released_at = now
            lock.released_by = scope.user_id
    period.status = STATUS_OPEN
    period.closed_at = None
    period.closed_by = None

    enqueue_outbox(
        PERIOD_REOPENED,
        {"period_id": period.id, "company_id": period.company_id, "reason": reason},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "period.reopened",
        "fiscal_period",
        period.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="compliance",
        severity="high",
        details={"reason": reason},
    )
    db.session.commit()
    return period


def lock_period(scope: TenantScope, period_id: int, lock_type: str, reason: Optional[str] = None) -> PeriodLock:
    """Add a lock; ``FULL`` needs a closed period and makes it ``LOCKED``."""
    scope.require(PERIOD_CLOSE)
    lock_type = (lock_type or "").upper()
    if lock_type not in LOCK_TYPES:
        raise DomainError("validation_error", "Unknown lock type", {"allowed": list(LOCK_TYPES)})
    period = get_period(scope, period_id)
    existing = _active_lock(period, lock_type)
    if existing is not None:
        return existing
    if lock_type == LOCK_FULL:
        if period.status != STATUS_CLOSED:
            raise DomainError("period_not_closed", "Only a closed period can be fully locked", {"status": period.status})
        period.status = STATUS_LOCKED

    lock = PeriodLock(period=period, lock_type=lock_type, locked_by=scope.user_id, reason=reason)
    db.session.add(lock)
    db.session.flush()
    enqueue_outbox(
        PERIOD_LOCKED,
        {"period_id": period.id, "company_id": period.company_id, "lock_type": lock_type},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "period.locked",
        "fiscal_period",
        period.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="compliance",
        severity="high" if lock_type == LOCK_FULL else "medium",
        details={"lock_type": lock_type, "reason": reason},
    )
    db.session.commit()
    return lock
