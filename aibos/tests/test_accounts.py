from __future__ import annotations

from decimal import Decimal

import pytest

pytestmark = pytest.mark.integration

from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.services.account_service import (
    create_account,
    deactivate_account,
    list_accounts,
    search_accounts,
    seed_default_chart,
)
from aibos.domains.ledger.services.posting_service import create_journal
from aibos.domains.reports.services.statement_service import balance_sheet
from aibos.domains.reports.services.trial_balance_service import trial_balance
from aibos.tests.factories import journal_payload, member


def test_default_chart_is_seeded_once(app, books):
    assert len(books.accounts) == 21
    assert books.accounts["1100"].normal_balance == "DEBIT"
    assert books.accounts["4000"].normal_balance == "CREDIT"

    assert seed_default_chart(books.scope) == []


def test_create_account_defaults_subtype_and_normal_balance(app, books):
    account = create_account(books.scope, code="2300", name="  Customer   Deposits ", account_type="liability")

    assert account.account_type == "LIABILITY"
    assert account.account_subtype == "current_liability"
    assert account.normal_balance == "CREDIT"
    assert account.name == "Customer   Deposits"
    assert account.normalized_name == "customer deposits"


@pytest.mark.parametrize(
    "fields, code",
    [
        ({"code": "1000", "name": "Dup", "account_type": "ASSET"}, "duplicate_account_code"),
        ({"code": "7000", "name": "Odd", "account_type": "GAINS"}, "invalid_account_type"),
        ({"code": "7001", "name": "Odd", "account_type": "ASSET", "account_subtype": "payable"}, "invalid_account_subtype"),
        ({"code": "7002", "name": "Child", "account_type": "ASSET", "parent_id": 999999}, "account_not_found"),
        ({"code": "7003", "name": "FX", "account_type": "ASSET", "currency": "XXY"}, "invalid_currency"),
        ({"code": " ", "name": "Blank", "account_type": "ASSET"}, "validation_error"),
    ],
)
def test_create_account_rejections(app, books, fields, code):
    with pytest.raises(DomainError) as exc:
        create_account(books.scope, **fields)
    assert exc.value.code == code


def test_account_management_needs_permission(app, books):
    clerk = member(books, "clerk@example.com", "clerk")

    with pytest.raises(DomainError) as exc:
        create_account(clerk, code="7100", name="Petty cash", account_type="ASSET", account_subtype="cash")
    assert exc.value.code == "forbidden"


def test_list_and_search(app, books):
    assets = list_accounts(books.scope, account_type="asset")
    assert [a.code for a in assets][:2] == ["1000", "1010"]
    assert {a.account_type for a in assets} == {"ASSET"}
    assert [a.code for a in list_accounts(books.scope, subtype="BANK")] == ["1010"]

    assert [a.code for a in search_accounts(books.scope, "10")] == ["1000", "1010"]
    by_name = [a.code for a in search_accounts(books.scope, "expense")]
    assert by_name == ["1300", "6000", "6100", "6200", "6900"]
    assert search_accounts(books.scope, "   ") == []
    assert len(search_accounts(books.scope, "1", limit=3)) == 3


def test_deactivate_blocked_while_balance_nonzero(app, books):
    cash, sales = books.accounts["1000"], books.accounts["4000"]
    create_journal(books.scope, journal_payload(cash, sales, "40.00"), post=True)

    with pytest.raises(DomainError) as exc:
        deactivate_account(books.scope, sales.id)
    assert exc.value.code == "account_has_balance"
    assert Decimal(exc.value.details["balance"]) == Decimal("-40")

    prepaid = deactivate_account(books.scope, books.accounts["1300"].id)
    assert prepaid.is_active is False
    assert "1300" not in {a.code for a in list_accounts(books.scope, active=True)}


def test_posting_rules_follow_account_settings(app, books):
    cash = books.accounts["1000"]
    header = create_account(
        books.scope, code="4100", name="Services (header)", account_type="REVENUE", allow_posting=False
    )
    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, header))
    assert exc.value.code == "account_not_postable"

    euro_bank = create_account(
        books.scope, code="1020", name="Euro Bank", account_type="ASSET", account_subtype="bank", currency="EUR"
    )
    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(euro_bank, books.accounts["4000"]))
    assert exc.value.code == "currency_mismatch"


def test_account_endpoints(client, books, owner_headers):
    created = client.post(
        "/api/v1/accounts",
        json={"code": "1310", "name": "Deposits Paid", "account_type": "asset", "account_subtype": "prepaid"},
        headers=owner_headers,
    )
    assert created.status_code == 201, created.get_json()
    account = created.get_json()["account"]
    assert account["normal_balance"] == "DEBIT"

    duplicate = client.post(
        "/api/v1/accounts",
        json={"code": "1310", "name": "Again", "account_type": "ASSET"},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409

    listing = client.get("/api/v1/accounts?type=asset", headers=owner_headers)
    assert "1310" in {a["code"] for a in listing.get_json()["accounts"]}

    search = client.get("/api/v1/accounts/search?q=deposits", headers=owner_headers)
    assert [a["code"] for a in search.get_json()["results"]] == ["1310"]

    deactivated = client.post(f"/api/v1/accounts/{account['id']}/deactivate", headers=owner_headers)
    assert deactivated.get_json()["account"]["is_active"] is False


def test_contra_account_takes_normal_balance_override(app, books):
    assert books.accounts["1590"].normal_balance == "CREDIT"
    contra = create_account(
        books.scope,
        code="1595",
        name="Accumulated Amortisation",
        account_type="ASSET",
        account_subtype="accumulated_depreciation",
        normal_balance="credit",
    )
    assert contra.normal_balance == "CREDIT"

    create_journal(books.scope, journal_payload(books.accounts["6100"], contra, "100.00"), post=True)

    row = next(r for r in trial_balance(books.scope).rows if r.account_code == "1595")
    assert row.closing_balance == Decimal("100.00")
    assert row.credit == Decimal("100.00")
    sheet = balance_sheet(books.scope)
    assert sheet["assets"]["non_current"]["total"] == "-100.00"
    assert sheet["is_balanced"] is True


def test_invalid_normal_balance_rejected(app, books):
    with pytest.raises(DomainError) as exc:
        create_account(books.scope, code="1596", name="Odd", account_type="ASSET", normal_balance="SIDEWAYS")
    assert exc.value.code == "invalid_normal_balance"


def test_account_api_accepts_normal_balance(client, books, owner_headers):
    resp = client.post(
        "/api/v1/accounts",
        json={"code": "4950", "name": "Sales Returns", "account_type": "REVENUE", "normal_balance": "debit"},
        headers=owner_headers,
    )
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()["account"]["normal_balance"] == "DEBIT"

    bad = client.post(
        "/api/v1/accounts",
        json={"code": "4951", "name": "Odd", "account_type": "REVENUE", "normal_balance": "both"},
        headers=owner_headers,
    )
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "validation_error"
