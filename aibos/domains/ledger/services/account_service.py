"""Chart of accounts service."""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, or_

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import ACCOUNT_MANAGE
from aibos.core.tenancy.scope import TenantScope
from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.constants import (
    ACCOUNT_SUBTYPES,
    ACCOUNT_TYPES,
    CREDIT,
    DEBIT,
    DEFAULT_SUBTYPE,
    LEDGER_STATUSES,
    NORMAL_BALANCE,
)
from aibos.domains.ledger.events import LEDGER_ACCOUNT_CREATED, LEDGER_ACCOUNT_DEACTIVATED
from aibos.domains.ledger.models.ledger_models import Account, Journal, JournalLine
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 50

# (code, name, type, subtype)
DEFAULT_CHART = (
    ("1000", "Cash on Hand", "ASSET", "cash"),
    ("1010", "Operating Bank Account", "ASSET", "bank"),
    ("1100", "Accounts Receivable", "ASSET", "receivable"),
    ("1200", "Inventory", "ASSET", "inventory"),
    ("1300", "Prepaid Expenses", "ASSET", "prepaid"),
    ("1400", "Input Tax Receivable", "ASSET", "tax_receivable"),
    ("1500", "Property, Plant & Equipment", "ASSET", "fixed_asset"),
    ("1590", "Accumulated Depreciation", "ASSET", "accumulated_depreciation"),
    ("2000", "Accounts Payable", "LIABILITY", "payable"),
    ("2100", "Accrued Liabilities", "LIABILITY", "accrued"),
    ("2200", "Output Tax Payable", "LIABILITY", "tax_payable"),
    ("2500", "Long-term Loans", "LIABILITY", "long_term_debt"),
    ("3000", "Share Capital", "EQUITY", "share_capital"),
    ("3100", "Retained Earnings", "EQUITY", "retained_earnings"),
    ("4000", "Sales Revenue", "REVENUE", "operating_revenue"),
    ("4900", "Other Income", "REVENUE", "other_income"),
    ("5000", "Cost of Sales", "EXPENSE", "cost_of_sales"),
    ("6000", "Operating Expenses", "EXPENSE", "operating_expense"),
    ("6100", "Depreciation Expense", "EXPENSE", "depreciation"),
    ("6200", "Interest Expense", "EXPENSE", "interest"),
    ("6900", "Income Tax Expense", "EXPENSE", "tax_expense"),
)


def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().lower())


def _stage_account(
    scope: TenantScope,
    company_id: int,
    code: str,
    name: str,
    account_type: str,
    account_subtype: Optional[str] = None,
    currency: Optional[str] = None,
    parent_id: Optional[int] = None,
    description: Optional[str] = None,
    allow_posting: bool = True,
    normal_balance: Optional[str] = None,
) -> Account:
    code = (code or "").strip()
    name = (name or "").strip()
    if not code or not name:
        raise DomainError("validation_error", "Account code and name are required")
    account_type = (account_type or "").upper()
    if account_type not in ACCOUNT_TYPES:
        raise DomainError("invalid_account_type", f"Unknown account type '{account_type}'")
    subtype = (account_subtype or DEFAULT_SUBTYPE[account_type]).lower()
    if subtype not in ACCOUNT_SUBTYPES[account_type]:
        raise DomainError(
            "invalid_account_subtype",
            f"Subtype '{subtype}' is not valid for {account_type}",
            {"allowed": sorted(ACCOUNT_SUBTYPES[account_type])},
        )
    # Contra accounts such as accumulated depreciation run against their type.
    normal_balance = (normal_balance or NORMAL_BALANCE[account_type]).upper()
    if normal_balance not in (DEBIT, CREDIT):
        raise DomainError(
            "invalid_normal_balance", "normal_balance must be DEBIT or CREDIT", {"field": "normal_balance"}
        )
    if Account.query.filter_by(company_id=company_id, code=code).first():
        raise DomainError("duplicate_account_code", f"Account code '{code}' already exists")
    if parent_id is not None:
        parent = Account.query.filter_by(id=parent_id, company_id=company_id, tenant_id=scope.tenant_id).first()
        if parent is None:
            raise DomainError("account_not_found", "Parent account not found", {"parent_id": parent_id})
    if currency:
        from aibos.domains.fx.services.currency_service import require_currency

        currency = require_currency(currency).code

    account = Account(
        tenant_id=scope.tenant_id,
        company_id=company_id,
        code=code,
        name=name,
        normalized_name=_normalize_name(name),
        account_type=account_type,
        account_subtype=subtype,
        normal_balance=normal_balance,
        currency=currency,
        parent_id=parent_id,
        description=description,
        allow_posting=allow_posting,
        is_active=True,
    )
    db.session.add(account)
    return account


def create_account(scope: TenantScope, **fields) -> Account:
    """Create an account in the scoped company and emit an outbox event."""
    scope.require(ACCOUNT_MANAGE)
    company_id = scope.require_company()
    account = _stage_account(scope, company_id, **fields)
    db.session.flush()
    enqueue_outbox(
        LEDGER_ACCOUNT_CREATED,
        {
            "account_id": account.id,
            "company_id": company_id,
            "code": account.code,
            "name": account.name,
            "account_type": account.account_type,
            "account_subtype": account.account_subtype,
        },
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "account.created",
        "account",
        account.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={"code": account.code, "type": account.account_type},
    )
    db.session.commit()
    return account


def seed_default_chart(scope: TenantScope, company_id: Optional[int] = None) -> List[Account]:
    """Create the standard chart for a company; codes that already exist are skipped."""
    scope.require(ACCOUNT_MANAGE)
    company_id = company_id or scope.require_company()
    existing = {a.code for a in Account.query.filter_by(company_id=company_id).all()}
    created: List[Account] = []
    for code, name, account_type, subtype in DEFAULT_CHART:
        if code in existing:
            continue
        normal_balance = CREDIT if subtype == "accumulated_depreciation" else None
        created.append(
            _stage_account(scope, company_id, code, name, account_type, subtype, normal_balance=normal_balance)
        )
    db.session.flush()
    record_audit(
        "account.chart_seeded",
        "company",
        company_id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        details={"created": len(created)},
    )
    db.session.commit()
    logger.info("Seeded %d accounts for company %s", len(created), company_id)
    return created


def get_account(scope: TenantScope, account_id: int) -> Account:
    account = Account.query.filter_by(
        id=account_id, tenant_id=scope.tenant_id, company_id=scope.require_company()
    ).first()
    if account is None:
        raise DomainError("not_found", "Account not found")
    return account


def list_accounts(
    scope: TenantScope,
    account_type: Optional[str] = None,
    subtype: Optional[str] = None,
    active: Optional[bool] = None,
) -> List[Account]:
    query = Account.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company())
    if account_type:
        query = query.filter(Account.account_type == account_type.upper())
    if subtype:
        query = query.filter(Account.account_subtype == subtype.lower())
    if active is not None:
        query = query.filter(Account.is_active.is_(active))
    return query.order_by(Account.code).all()


def search_accounts(scope: TenantScope, q: str, limit: int = 20) -> List[Account]:
    """Code-prefix matches first, then name substring matches."""
    term = (q or "").strip()
    if not term:
        return []
    limit = max(min(limit, MAX_SEARCH_RESULTS), 1)
    base = Account.query.filter_by(tenant_id=scope.tenant_id, company_id=scope.require_company(), is_active=True)
    by_code = base.filter(Account.code.like(f"{term}%")).order_by(Account.code).limit(limit).all()
    seen = {a.id for a in by_code}
    results = list(by_code)
    if len(results) < limit:
        by_name = (
            base.filter(
                or_(
                    Account.normalized_name.like(f"%{_normalize_name(term)}%"),
                    Account.description.ilike(f"%{term}%"),
                )
            )
            .order_by(Account.code)
            .limit(limit)
            .all()
        )
        results.extend(a for a in by_name if a.id not in seen)
    return results[:limit]


def account_balance(account: Account) -> Decimal:
    """Net posted base-currency balance (debit minus credit)."""
    debit, credit = (
        db.session.query(
            func.coalesce(func.sum(JournalLine.base_debit), 0),
            func.coalesce(func.sum(JournalLine.base_credit), 0),
        )
        .join(Journal, Journal.id == JournalLine.journal_id)
        .filter(JournalLine.account_id == account.id, Journal.status.in_(LEDGER_STATUSES))
        .one()
    )
    return Decimal(str(debit or 0)) - Decimal(str(credit or 0))


def deactivate_account(scope: TenantScope, account_id: int) -> Account:
    scope.require(ACCOUNT_MANAGE)
    account = get_account(scope, account_id)
    balance = account_balance(account)
    if balance != 0:
        raise DomainError(
            "account_has_balance",
            "Account with a non-zero balance cannot be deactivated",
            {"balance": str(balance)},
        )
    account.is_active = False
    enqueue_outbox(
        LEDGER_ACCOUNT_DEACTIVATED,
        {"account_id": account.id, "company_id": account.company_id, "code": account.code},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "account.deactivated",
        "account",
        account.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        severity="medium",
        details={"code": account.code},
    )
    db.session.commit()
    return account


def find_account_by_subtype(tenant_id: int, company_id: int, subtype: str) -> Optional[Account]:
    return (
        Account.query.filter_by(
            tenant_id=tenant_id, company_id=company_id, account_subtype=subtype, is_active=True
        )
        .order_by(Account.code)
        .first()
    )
