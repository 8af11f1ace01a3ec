"""Posted base-currency activity per account, shared by every report."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func

from aibos.core.tenancy.models import Company
from aibos.core.utils.money import ZERO, to_decimal
from aibos.domains.ledger.constants import CREDIT, LEDGER_STATUSES, NORMAL_BALANCE
from aibos.domains.ledger.models.ledger_models import Account, Journal, JournalLine
from aibos.extensions import db

Totals = Dict[int, Tuple[Decimal, Decimal]]


def account_totals(
    company: Company,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    before: Optional[dt.date] = None,
) -> Totals:
    """Return ``{account_id: (debit, credit)}`` for ledger journals in range.

    ``start``/``end`` are inclusive; ``before`` is an exclusive upper bound.
    """
    query = (
        db.session.query(
            JournalLine.account_id,
            func.coalesce(func.sum(JournalLine.base_debit), 0),
            func.coalesce(func.sum(JournalLine.base_credit), 0),
        )
        .join(Journal, Journal.id == JournalLine.journal_id)
        .filter(
            Journal.tenant_id == company.tenant_id,
            Journal.company_id == company.id,
            Journal.status.in_(LEDGER_STATUSES),
        )
    )
    if start:
        query = query.filter(Journal.journal_date >= start)
    if end:
        query = query.filter(Journal.journal_date <= end)
    if before:
        query = query.filter(Journal.journal_date < before)
    totals: Totals = {}
    for account_id, debit_sum, credit_sum in query.group_by(JournalLine.account_id).all():
        totals[account_id] = (to_decimal(debit_sum), to_decimal(credit_sum))
    return totals


def company_accounts(company: Company) -> List[Account]:
    return (
        Account.query.filter_by(tenant_id=company.tenant_id, company_id=company.id)
        .order_by(Account.code.asc())
        .all()
    )


def signed_balance(account: Account, debit: Decimal, credit: Decimal) -> Decimal:
    """Net balance in the account's normal direction."""
    if account.normal_balance == CREDIT:
        return credit - debit
    return debit - credit


def net_for(account: Account, totals: Totals) -> Decimal:
    """Balance signed by account type, so contra accounts reduce their section."""
    debit, credit = totals.get(account.id, (ZERO, ZERO))
    if NORMAL_BALANCE[account.account_type] == CREDIT:
        return credit - debit
    return debit - credit
