"""Profit & loss, balance sheet and cash-flow statements."""

from __future__ import annotations

import datetime as dt
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from aibos.core.auth.permissions import REPORT_VIEW
from aibos.core.tenancy.models import Company
from aibos.core.tenancy.scope import TenantScope
from aibos.core.tenancy.services import current_company
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import ZERO, money_str
from aibos.domains.ledger.constants import (
    ASSET,
    CASH_SUBTYPES,
    EQUITY,
    EXPENSE,
    LEDGER_STATUSES,
    LIABILITY,
    NON_CURRENT_ASSET_SUBTYPES,
    NON_CURRENT_LIABILITY_SUBTYPES,
    REVENUE,
)
from aibos.domains.ledger.models.ledger_models import Account, Journal, JournalLine
from aibos.domains.reports.services.ledger_activity import account_totals, company_accounts, net_for

BALANCE_TOLERANCE = Decimal("0.01")

OPERATING = "operating"
INVESTING = "investing"
FINANCING = "financing"


def _check_range(start: dt.date, end: dt.date) -> None:
    if start > end:
        raise DomainError("validation_error", "start must not be after end", {"start": start.isoformat()})


def _line(account: Account, amount: Decimal) -> dict:
    return {
        "account_id": account.id,
        "account_code": account.code,
        "account_name": account.name,
        "account_subtype": account.account_subtype,
        "amount": money_str(amount),
    }


def _section(accounts: List[Account], amounts: Dict[int, Decimal]) -> Tuple[dict, Decimal]:
    lines = [_line(a, amounts[a.id]) for a in accounts if amounts.get(a.id)]
    total = sum((amounts.get(a.id, ZERO) for a in accounts), ZERO)
    return {"lines": lines, "total": money_str(total)}, total


def _company(scope: TenantScope) -> Company:
    scope.require(REPORT_VIEW)
    return current_company(scope)


def _variance_percent(variance: Decimal, comparative: Decimal) -> str:
    if not comparative:
        return money_str(ZERO)
    return money_str(variance / abs(comparative) * 100)


def _compare(current: Decimal, comparative: Decimal) -> dict:
    variance = current - comparative
    return {
        "comparative_amount": money_str(comparative),
        "variance": money_str(variance),
        "variance_percent": _variance_percent(variance, comparative),
    }


def _comparative_section(
    section: dict, accounts: List[Account], amounts: Dict[int, Decimal], prior: Dict[int, Decimal]
) -> Tuple[dict, Decimal]:
    """Add prior amounts and variances; accounts active in either period are listed."""
    lines = []
    for account in accounts:
        current, comparative = amounts.get(account.id, ZERO), prior.get(account.id, ZERO)
        if not current and not comparative:
            continue
        lines.append({**_line(account, current), **_compare(current, comparative)})
    total = sum((amounts.get(a.id, ZERO) for a in accounts), ZERO)
    prior_total = sum((prior.get(a.id, ZERO) for a in accounts), ZERO)
    return {**section, "lines": lines, **_compare(total, prior_total)}, prior_total


# ==================== Profit & loss ====================


def build_profit_and_loss(
    company: Company,
    start: dt.date,
    end: dt.date,
    compare_start: Optional[dt.date] = None,
    compare_end: Optional[dt.date] = None,
) -> dict:
    """Income statement for ``start``..``end``.

    With ``compare_start``/``compare_end`` every line and section also carries
    the prior amount, ``variance`` (current minus prior) and ``variance_percent``
    against the absolute prior amount, zero when the prior amount is zero.
    """
    _check_range(start, end)
    comparing = compare_start is not None or compare_end is not None
    if comparing:
        if compare_start is None or compare_end is None:
            raise DomainError(
                "validation_error",
                "compare_start and compare_end go together",
                {"fields": ["compare_start", "compare_end"]},
            )
        _check_range(compare_start, compare_end)

    totals = account_totals(company, start=start, end=end)
    accounts = company_accounts(company)
    amounts = {a.id: net_for(a, totals) for a in accounts}

    revenue_accounts = [a for a in accounts if a.account_type == REVENUE]
    cogs_accounts = [a for a in accounts if a.account_type == EXPENSE and a.account_subtype == "cost_of_sales"]
    other_expense_accounts = [
        a for a in accounts if a.account_type == EXPENSE and a.account_subtype != "cost_of_sales"
    ]

    revenue, total_revenue = _section(revenue_accounts, amounts)
    cost_of_sales, total_cogs = _section(cogs_accounts, amounts)
    expenses, total_other = _section(other_expense_accounts, amounts)
    gross_profit = total_revenue - total_cogs
    total_expenses = total_cogs + total_other
    net_income = total_revenue - total_expenses
    report = {
        "company_id": company.id,
        "currency": company.base_currency,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "revenue": revenue,
        "cost_of_sales": cost_of_sales,
        "gross_profit": money_str(gross_profit),
        "expenses": expenses,
        "total_revenue": money_str(total_revenue),
        "total_expenses": money_str(total_expenses),
        "net_income": money_str(net_income),
    }
    if not comparing:
        return report

    prior_totals = account_totals(company, start=compare_start, end=compare_end)
    prior = {a.id: net_for(a, prior_totals) for a in accounts}
    report["revenue"], prior_revenue = _comparative_section(revenue, revenue_accounts, amounts, prior)
    report["cost_of_sales"], prior_cogs = _comparative_section(cost_of_sales, cogs_accounts, amounts, prior)
    report["expenses"], prior_other = _comparative_section(expenses, other_expense_accounts, amounts, prior)
    prior_expenses = prior_cogs + prior_other
    report["comparative"] = {
        "start": compare_start.isoformat(),
        "end": compare_end.isoformat(),
        "total_revenue": money_str(prior_revenue),
        "gross_profit": money_str(prior_revenue - prior_cogs),
        "total_expenses": money_str(prior_expenses),
        "net_income": money_str(prior_revenue - prior_expenses),
    }
    report["variance"] = {
        "total_revenue": money_str(total_revenue - prior_revenue),
        "gross_profit": money_str(gross_profit - (prior_revenue - prior_cogs)),
        "total_expenses": money_str(total_expenses - prior_expenses),
        "net_income": money_str(net_income - (prior_revenue - prior_expenses)),
    }
    return report


def profit_and_loss(
    scope: TenantScope,
    start: dt.date,
    end: dt.date,
    compare_start: Optional[dt.date] = None,
    compare_end: Optional[dt.date] = None,
) -> dict:
    return build_profit_and_loss(_company(scope), start, end, compare_start, compare_end)


def _net_income(company: Company, accounts: List[Account], **bounds) -> Decimal:
    totals = account_totals(company, **bounds)
    income = ZERO
    for account in accounts:
        if account.account_type == REVENUE:
            income += net_for(account, totals)
        elif account.account_type == EXPENSE:
            income -= net_for(account, totals)
    return income


# ==================== Balance sheet ====================


def build_balance_sheet(company: Company, as_of: dt.date) -> dict:
    """Positions at ``as_of``; unclosed P&L is shown inside equity."""
    from aibos.domains.periods.services.period_service import fiscal_year_bounds, fiscal_year_for

    accounts = company_accounts(company)
    totals = account_totals(company, end=as_of)
    amounts = {a.id: net_for(a, totals) for a in accounts}

    def pick(account_type: str, non_current: frozenset, current: bool) -> List[Account]:
        return [
            a
            for a in accounts
            if a.account_type == account_type and (a.account_subtype not in non_current) == current
        ]

    current_assets, total_current_assets = _section(pick(ASSET, NON_CURRENT_ASSET_SUBTYPES, True), amounts)
    fixed_assets, total_fixed_assets = _section(pick(ASSET, NON_CURRENT_ASSET_SUBTYPES, False), amounts)
    current_liabilities, total_current_liabilities = _section(
        pick(LIABILITY, NON_CURRENT_LIABILITY_SUBTYPES, True), amounts
    )
    long_term_liabilities, total_long_term = _section(pick(LIABILITY, NON_CURRENT_LIABILITY_SUBTYPES, False), amounts)
    equity, total_equity_accounts = _section([a for a in accounts if a.account_type == EQUITY], amounts)

    year_start, _ = fiscal_year_bounds(company.fiscal_year_end, fiscal_year_for(company, as_of))
    current_year_earnings = _net_income(company, accounts, start=year_start, end=as_of)
    prior_years_earnings = _net_income(company, accounts, before=year_start)
    equity["current_year_earnings"] = money_str(current_year_earnings)
    equity["prior_years_earnings"] = money_str(prior_years_earnings)
    total_equity = total_equity_accounts + current_year_earnings + prior_years_earnings
    equity["total"] = money_str(total_equity)

    total_assets = total_current_assets + total_fixed_assets
    total_liabilities = total_current_liabilities + total_long_term
    difference = total_assets - (total_liabilities + total_equity)
    return {
        "company_id": company.id,
        "currency": company.base_currency,
        "as_of": as_of.isoformat(),
        "assets": {
            "current": current_assets,
            "non_current": fixed_assets,
            "total": money_str(total_assets),
        },
        "liabilities": {
            "current": current_liabilities,
            "non_current": long_term_liabilities,
            "total": money_str(total_liabilities),
        },
        "equity": equity,
        "total_liabilities_and_equity": money_str(total_liabilities + total_equity),
        "difference": money_str(difference),
        "is_balanced": abs(difference) <= BALANCE_TOLERANCE,
    }


def balance_sheet(scope: TenantScope, as_of: Optional[dt.date] = None) -> dict:
    return build_balance_sheet(_company(scope), as_of or dt.datetime.utcnow().date())


# ==================== Cash flow ====================


def cash_flow_activity(account: Account) -> str:
    if account.account_type in (REVENUE, EXPENSE):
        return OPERATING
    if account.account_type == EQUITY:
        return FINANCING
    if account.account_type == ASSET and account.account_subtype in NON_CURRENT_ASSET_SUBTYPES:
        return INVESTING
    if account.account_type == LIABILITY and account.account_subtype in NON_CURRENT_LIABILITY_SUBTYPES:
        return FINANCING
    return OPERATING


def _cash_balance(company: Company, cash_ids: set, **bounds) -> Decimal:
    totals = account_totals(company, **bounds)
    balance = ZERO
    for account_id in cash_ids:
        debit, credit = totals.get(account_id, (ZERO, ZERO))
        balance += debit - credit
    return balance


def build_cash_flow(company: Company, start: dt.date, end: dt.date) -> dict:
    """Direct method over journals that touch a cash or bank account.

    Each non-cash line contributes ``credit - debit`` to its activity.
    """
    _check_range(start, end)
    accounts = {a.id: a for a in company_accounts(company)}
    cash_ids = {a.id for a in accounts.values() if a.account_subtype in CASH_SUBTYPES}

    journals = (
        Journal.query.filter(
            Journal.tenant_id == company.tenant_id,
            Journal.company_id == company.id,
            Journal.status.in_(LEDGER_STATUSES),
            Journal.journal_date >= start,
            Journal.journal_date <= end,
            Journal.lines.any(JournalLine.account_id.in_(cash_ids)),
        )
        .order_by(Journal.journal_date, Journal.id)
        .all()
        if cash_ids
        else []
    )

    movements: Dict[str, "OrderedDict[int, Decimal]"] = {
        OPERATING: OrderedDict(),
        INVESTING: OrderedDict(),
        FINANCING: OrderedDict(),
    }
    for journal in journals:
        for line in journal.lines:
            if line.account_id in cash_ids:
                continue
            account = accounts[line.account_id]
            bucket = movements[cash_flow_activity(account)]
            bucket[account.id] = bucket.get(account.id, ZERO) + (line.base_credit - line.base_debit)

    sections = {}
    net_change = ZERO
    for activity, bucket in movements.items():
        total = sum(bucket.values(), ZERO)
        net_change += total
        sections[activity] = {
            "lines": [_line(accounts[account_id], amount) for account_id, amount in bucket.items() if amount],
            "total": money_str(total),
        }

    beginning = _cash_balance(company, cash_ids, before=start)
    ending = _cash_balance(company, cash_ids, end=end)
    return {
        "company_id": company.id,
        "currency": company.base_currency,
        "start": start.isoformat(),
        "end": end.isoformat(),
        **sections,
        "net_change": money_str(net_change),
        "beginning_cash": money_str(beginning),
        "ending_cash": money_str(ending),
        "reconciles": abs(beginning + net_change - ending) <= BALANCE_TOLERANCE,
    }


def cash_flow(scope: TenantScope, start: dt.date, end: dt.date) -> dict:
    return build_cash_flow(_company(scope), start, end)
