from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal

import pytest

pytestmark = pytest.mark.integration

from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.services.posting_service import create_journal, reverse_journal
from aibos.domains.reports.services.statement_service import balance_sheet, cash_flow, profit_and_loss
from aibos.domains.reports.services.trial_balance_service import trial_balance, trial_balance_csv
from aibos.tests.factories import bearer, login, member

Q1_START = date(2025, 1, 1)
Q1_END = date(2025, 3, 31)


def _post(books, when: str, debit: str, credit: str, amount: str):
    payload = {
        "journal_date": when,
        "description": f"{debit}/{credit}",
        "lines": [
            {"account_id": books.accounts[debit].id, "debit": amount},
            {"account_id": books.accounts[credit].id, "credit": amount},
        ],
    }
    return create_journal(books.scope, payload, post=True)


@pytest.fixture()
def ledger(books):
    """Two prior-year entries followed by a quarter of trading."""
    _post(books, "2024-12-15", "1000", "3000", "10000")  # share capital
    _post(books, "2024-12-20", "1000", "4000", "500")  # prior-year sale
    _post(books, "2025-02-10", "1010", "4000", "2000")  # sale into bank
    _post(books, "2025-02-15", "5000", "1000", "800")  # cost of sales
    _post(books, "2025-02-20", "6000", "2000", "300")  # expense on credit
    _post(books, "2025-03-01", "1500", "1010", "1200")  # equipment
    _post(books, "2025-03-05", "1010", "2500", "5000")  # term loan
    return books


def _rows(report):
    return {row.account_code: row for row in report.rows}


def test_trial_balance_balances_with_opening_balances(app, ledger):
    report = trial_balance(ledger.scope, as_of=Q1_END)

    assert report.is_balanced
    assert report.period_start == Q1_START
    assert report.total_debit == report.total_credit == Decimal("17800")
    rows = _rows(report)
    assert rows["4000"].opening_balance == Decimal("500")
    assert rows["4000"].period_credit == Decimal("2000")
    assert rows["4000"].closing_balance == Decimal("2500")
    assert rows["1000"].debit == Decimal("9700")
    assert rows["2000"].credit == Decimal("300")
    assert "1200" not in rows

    with_zero = trial_balance(ledger.scope, as_of=Q1_END, include_zero=True)
    assert "1200" in _rows(with_zero)


def test_trial_balance_ignores_drafts_and_nets_reversals(app, ledger):
    draft = create_journal(
        ledger.scope,
        {
            "journal_date": "2025-03-10",
            "lines": [
                {"account_id": ledger.accounts["6000"].id, "debit": "999"},
                {"account_id": ledger.accounts["1000"].id, "credit": "999"},
            ],
        },
    )
    assert draft.status == "draft"
    mistake = _post(ledger, "2025-03-12", "6000", "1000", "50")
    reverse_journal(ledger.scope, mistake.id, reversal_date=date(2025, 3, 13))

    rows = _rows(trial_balance(ledger.scope, as_of=Q1_END))
    assert rows["6000"].debit == Decimal("300")
    assert rows["6000"].period_debit == Decimal("350")
    assert rows["6000"].period_credit == Decimal("50")


def test_trial_balance_csv_has_totals_row(app, ledger):
    text = trial_balance_csv(trial_balance(ledger.scope, as_of=Q1_END))
    rows = list(csv.reader(io.StringIO(text)))

    assert rows[0][0] == "account_code"
    assert rows[1][0] == "1000"
    assert rows[-1][1] == "TOTAL"
    assert rows[-1][-2:] == ["17800.00", "17800.00"]


def test_profit_and_loss(app, ledger):
    report = profit_and_loss(ledger.scope, Q1_START, Q1_END)

    assert report["total_revenue"] == "2000.00"
    assert report["cost_of_sales"]["total"] == "800.00"
    assert report["gross_profit"] == "1200.00"
    assert report["total_expenses"] == "1100.00"
    assert report["net_income"] == "900.00"
    assert [line["account_code"] for line in report["expenses"]["lines"]] == ["6000"]

    with pytest.raises(DomainError) as exc:
        profit_and_loss(ledger.scope, Q1_END, Q1_START)
    assert exc.value.code == "validation_error"


def test_profit_and_loss_compares_against_a_prior_period(app, ledger):
    _post(ledger, "2024-12-28", "1000", "4900", "50")  # other income, prior period only

    report = profit_and_loss(
        ledger.scope, Q1_START, Q1_END, compare_start=date(2024, 12, 1), compare_end=date(2024, 12, 31)
    )

    lines = {line["account_code"]: line for line in report["revenue"]["lines"]}
    assert lines["4000"]["amount"] == "2000.00"
    assert lines["4000"]["comparative_amount"] == "500.00"
    assert lines["4000"]["variance"] == "1500.00"
    assert lines["4000"]["variance_percent"] == "300.00"
    assert lines["4900"]["amount"] == "0.00"
    assert lines["4900"]["variance_percent"] == "-100.00"
    assert report["revenue"]["comparative_amount"] == "550.00"
    assert report["revenue"]["variance_percent"] == "263.64"
    # Nothing to compare against: the percentage is zero rather than undefined.
    assert report["cost_of_sales"]["variance"] == "800.00"
    assert report["cost_of_sales"]["variance_percent"] == "0.00"
    assert report["comparative"]["net_income"] == "550.00"
    assert report["variance"]["net_income"] == "350.00"
    assert report["variance"]["gross_profit"] == "650.00"
    assert report["net_income"] == "900.00"

    plain = profit_and_loss(ledger.scope, Q1_START, Q1_END)
    assert "comparative" not in plain
    assert "variance" not in plain["revenue"]["lines"][0]

    with pytest.raises(DomainError) as exc:
        profit_and_loss(ledger.scope, Q1_START, Q1_END, compare_start=date(2024, 12, 1))
    assert exc.value.code == "validation_error"


def test_balance_sheet_balances_with_earnings_in_equity(app, ledger):
    report = balance_sheet(ledger.scope, Q1_END)

    assert report["is_balanced"] is True
    assert report["assets"]["total"] == "16700.00"
    assert report["assets"]["non_current"]["total"] == "1200.00"
    assert report["liabilities"]["current"]["total"] == "300.00"
    assert report["liabilities"]["non_current"]["total"] == "5000.00"
    assert report["equity"]["current_year_earnings"] == "900.00"
    assert report["equity"]["prior_years_earnings"] == "500.00"
    assert report["equity"]["total"] == "11400.00"
    assert report["total_liabilities_and_equity"] == "16700.00"


def test_cash_flow_reconciles_to_cash_balances(app, ledger):
    report = cash_flow(ledger.scope, Q1_START, Q1_END)

    assert report["operating"]["total"] == "1200.00"
    assert report["investing"]["total"] == "-1200.00"
    assert report["financing"]["total"] == "5000.00"
    assert report["net_change"] == "5000.00"
    assert report["beginning_cash"] == "10500.00"
    assert report["ending_cash"] == "15500.00"
    assert report["reconciles"] is True


def test_report_endpoints(client, ledger, owner_headers):
    member(ledger, "viewer@example.com", "viewer")
    viewer = bearer(login(client, "viewer@example.com", company_id=ledger.company.id)["access_token"])

    tb = client.get("/api/v1/reports/trial-balance?as_of=2025-03-31", headers=viewer)
    assert tb.status_code == 200
    assert tb.get_json()["report"]["is_balanced"] is True
    assert tb.get_json()["report"]["totals"]["debit"] == "17800.00"

    csv_resp = client.get("/api/v1/reports/trial-balance.csv?as_of=2025-03-31", headers=viewer)
    assert csv_resp.mimetype == "text/csv"
    assert "attachment" in csv_resp.headers["Content-Disposition"]

    pl = client.get("/api/v1/reports/profit-loss?start=2025-01-01&end=2025-03-31", headers=viewer)
    assert pl.get_json()["report"]["net_income"] == "900.00"

    compared = client.get(
        "/api/v1/reports/profit-loss?start=2025-01-01&end=2025-03-31&compare_start=2024-01-01&compare_end=2024-12-31",
        headers=viewer,
    )
    assert compared.status_code == 200
    assert compared.get_json()["report"]["comparative"]["net_income"] == "500.00"
    assert compared.get_json()["report"]["variance"]["net_income"] == "400.00"

    missing = client.get("/api/v1/reports/profit-loss?start=2025-01-01", headers=viewer)
    assert missing.status_code == 400

    bs = client.get("/api/v1/reports/balance-sheet?as_of=2025-03-31", headers=owner_headers)
    assert bs.get_json()["report"]["is_balanced"] is True

    cf = client.get("/api/v1/reports/cash-flow?start=2025-01-01&end=2025-03-31", headers=owner_headers)
    assert cf.get_json()["report"]["reconciles"] is True

    bad_date = client.get("/api/v1/reports/balance-sheet?as_of=31-03-2025", headers=owner_headers)
    assert bad_date.status_code == 400
    assert bad_date.get_json()["error"] == "validation_error"
