"""Trial balance built from posted base-currency lines."""

from __future__ import annotations

import csv
import datetime as dt
import io
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from aibos.core.auth.permissions import REPORT_VIEW
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import ZERO, money_str
from aibos.domains.ledger.constants import ACCOUNT_TYPES
from aibos.domains.reports.services.ledger_activity import (
    account_totals,
    company_accounts,
    net_for,
    signed_balance,
)

BALANCE_TOLERANCE = Decimal("0.01")

CSV_COLUMNS = (
    "account_code",
    "account_name",
    "account_type",
    "opening_balance",
    "period_debit",
    "period_credit",
    "closing_balance",
    "debit",
    "credit",
)


@dataclass
class TrialBalanceRow:
    account_id: int
    account_code: str
    account_name: str
    account_type: str
    account_subtype: str
    normal_balance: str
    opening_balance: Decimal
    period_debit: Decimal
    period_credit: Decimal
    closing_balance: Decimal
    debit: Decimal
    credit: Decimal

    def is_zero(self) -> bool:
        return not (self.opening_balance or self.period_debit or self.period_credit or self.closing_balance)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_code": self.account_code,
            "account_name": self.account_name,
            "account_type": self.account_type,
            "account_subtype": self.account_subtype,
            "normal_balance": self.normal_balance,
            "opening_balance": money_str(self.opening_balance),
            "period_debit": money_str(self.period_debit),
            "period_credit": money_str(self.period_credit),
            "closing_balance": money_str(self.closing_balance),
            "debit": money_str(self.debit),
            "credit": money_str(self.credit),
        }


@dataclass
class TrialBalance:
    company_id: int
    currency: str
    as_of: dt.date
    period_start: dt.date
    rows: List[TrialBalanceRow] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    total_period_debit: Decimal = ZERO
    total_period_credit: Decimal = ZERO
    type_totals: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) <= BALANCE_TOLERANCE

    def to_dict(self) -> dict:
        return {
            "company_id": self.company_id,
            "currency": self.currency,
            "as_of": self.as_of.isoformat(),
            "period_start": self.period_start.isoformat(),
            "accounts": [row.to_dict() for row in self.rows],
            "totals": {
                "debit": money_str(self.total_debit),
                "credit": money_str(self.total_credit),
                "period_debit": money_str(self.total_period_debit),
                "period_credit": money_str(self.total_period_credit),
                "difference": money_str(self.difference),
            },
            "type_totals": {
                account_type: {key: money_str(value) for key, value in totals.items()}
                for account_type, totals in self.type_totals.items()
            },
            "is_balanced": self.is_balanced,
        }


def build_trial_balance(
    company: Company,
    as_of: Optional[dt.date] = None,
    include_zero: bool = False,
    from_date: Optional[dt.date] = None,
) -> TrialBalance:
    """Opening balances run up to the fiscal-year start (or ``from_date``)."""
    from aibos.domains.periods.services.period_service import fiscal_year_bounds, fiscal_year_for

    as_of = as_of or dt.datetime.utcnow().date()
    if from_date is None:
        from_date, _ = fiscal_year_bounds(company.fiscal_year_end, fiscal_year_for(company, as_of))
    if from_date > as_of:
        raise DomainError("validation_error", "from_date must not be after as_of", {"field": "from_date"})

    opening = account_totals(company, before=from_date)
    period = account_totals(company, start=from_date, end=as_of)

    report = TrialBalance(company_id=company.id, currency=company.base_currency, as_of=as_of, period_start=from_date)
    report.type_totals = {t: {"debit": ZERO, "credit": ZERO, "balance": ZERO} for t in ACCOUNT_TYPES}
    for account in company_accounts(company):
        open_debit, open_credit = opening.get(account.id, (ZERO, ZERO))
        period_debit, period_credit = period.get(account.id, (ZERO, ZERO))
        net_debit = open_debit + period_debit - open_credit - period_credit
        row = TrialBalanceRow(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_type=account.account_type,
            account_subtype=account.account_subtype,
            normal_balance=account.normal_balance,
            opening_balance=signed_balance(account, open_debit, open_credit),
            period_debit=period_debit,
            period_credit=period_credit,
            closing_balance=signed_balance(account, open_debit + period_debit, open_credit + period_credit),
            debit=net_debit if net_debit > 0 else ZERO,
            credit=-net_debit if net_debit < 0 else ZERO,
        )
        if row.is_zero() and not include_zero:
            continue
        report.rows.append(row)
        report.total_debit += row.debit
        report.total_credit += row.credit
        report.total_period_debit += row.period_debit
        report.total_period_credit += row.period_credit
        bucket = report.type_totals[account.account_type]
        bucket["debit"] += row.debit
        bucket["credit"] += row.credit
        bucket["balance"] += net_for(
            account, {account.id: (open_debit + period_debit, open_credit + period_credit)}
        )
    return report


def trial_balance(
    scope: TenantScope,
    as_of: Optional[dt.date] = None,
    include_zero: bool = False,
    from_date: Optional[dt.date] = None,
) -> TrialBalance:
    scope.require(REPORT_VIEW)
    return build_trial_balance(current_company(scope), as_of, include_zero=include_zero, from_date=from_date)


def trial_balance_csv(report: TrialBalance) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for row in report.rows:
        data = row.to_dict()
        writer.writerow([data[column] for column in CSV_COLUMNS])
    writer.writerow(
        [
            "",
            "TOTAL",
            "",
            "",
            money_str(report.total_period_debit),
            money_str(report.total_period_credit),
            "",
            money_str(report.total_debit),
            money_str(report.total_credit),
        ]
    )
    return output.getvalue()
