"""Account classification and journal status constants."""

from __future__ import annotations

from typing import Dict, FrozenSet

ASSET = "ASSET"
LIABILITY = "LIABILITY"
EQUITY = "EQUITY"
REVENUE = "REVENUE"
EXPENSE = "EXPENSE"

ACCOUNT_TYPES = (ASSET, LIABILITY, EQUITY, REVENUE, EXPENSE)

DEBIT = "DEBIT"
CREDIT = "CREDIT"

NORMAL_BALANCE: Dict[str, str] = {
    ASSET: DEBIT,
    EXPENSE: DEBIT,
    LIABILITY: CREDIT,
    EQUITY: CREDIT,
    REVENUE: CREDIT,
}

ACCOUNT_SUBTYPES: Dict[str, FrozenSet[str]] = {
    ASSET: frozenset(
        {
            "cash",
            "bank",
            "receivable",
            "inventory",
            "prepaid",
            "tax_receivable",
            "current_asset",
            "fixed_asset",
            "intangible_asset",
            "investment",
            "accumulated_depreciation",
        }
    ),
    LIABILITY: frozenset(
        {"payable", "accrued", "tax_payable", "current_liability", "long_term_debt", "loan"}
    ),
    EQUITY: frozenset({"share_capital", "retained_earnings", "other_equity", "dividends"}),
    REVENUE: frozenset({"operating_revenue", "other_income"}),
    EXPENSE: frozenset(
        {"cost_of_sales", "operating_expense", "depreciation", "interest", "tax_expense", "other_expense"}
    ),
}

DEFAULT_SUBTYPE: Dict[str, str] = {
    ASSET: "current_asset",
    LIABILITY: "current_liability",
    EQUITY: "other_equity",
    REVENUE: "operating_revenue",
    EXPENSE: "operating_expense",
}

CASH_SUBTYPES = frozenset({"cash", "bank"})
NON_CURRENT_ASSET_SUBTYPES = frozenset(
    {"fixed_asset", "intangible_asset", "investment", "accumulated_depreciation"}
)
NON_CURRENT_LIABILITY_SUBTYPES = frozenset({"long_term_debt", "loan"})

JOURNAL_DRAFT = "draft"
JOURNAL_PENDING_APPROVAL = "pending_approval"
JOURNAL_POSTED = "posted"
JOURNAL_REVERSED = "reversed"

JOURNAL_STATUSES = (JOURNAL_DRAFT, JOURNAL_PENDING_APPROVAL, JOURNAL_POSTED, JOURNAL_REVERSED)
# Statuses whose lines are part of the ledger; a reversed journal stays in it
# alongside the reversal that offsets it.
LEDGER_STATUSES = (JOURNAL_POSTED, JOURNAL_REVERSED)
LOCKED_STATUSES = frozenset({JOURNAL_POSTED, JOURNAL_REVERSED})
