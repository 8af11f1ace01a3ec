from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Query

pytestmark = pytest.mark.integration

from aibos.core.audit.models import AuditLog
from aibos.core.tenancy.models import Company
from aibos.core.utils.errors import DomainError
from aibos.domains.fx.services.rate_service import record_manual_rate
from aibos.domains.ledger.models.ledger_models import Journal
from aibos.domains.ledger.services.posting_service import (
    approve_journal,
    create_journal,
    normalize_lines,
    post_journal,
    reverse_journal,
)
from aibos.domains.periods.services.period_service import (
    find_period_for_date,
    generate_fiscal_year,
    lock_period,
)
from aibos.extensions import db
from aibos.platform.outbox.models import OutboxMessage
from aibos.tests.factories import build_books, journal_payload, member


def _cash_and_sales(books):
    return books.accounts["1000"], books.accounts["4000"]


def test_posted_journal_is_numbered_and_balanced(app, books):
    cash, sales = _cash_and_sales(books)

    journal = create_journal(books.scope, journal_payload(cash, sales, "250.00"), post=True)

    assert journal.status == "posted"
    assert journal.journal_number.startswith(f"JRN-{datetime.utcnow():%Y%m}-")
    assert journal.total_debit == journal.total_credit == Decimal("250.00")
    assert journal.base_total_debit == Decimal("250.00")
    assert journal.rate_source == "identity"
    assert [line.line_number for line in journal.lines] == [1, 2]
    assert journal.posted_by == books.owner.id

    events = {m.event_type for m in OutboxMessage.query.filter_by(tenant_id=books.tenant.id).all()}
    assert {"ledger.journal.created", "ledger.journal.posted"} <= events


def test_draft_then_post(app, books):
    cash, sales = _cash_and_sales(books)
    draft = create_journal(books.scope, journal_payload(cash, sales))
    assert draft.status == "draft"

    posted = post_journal(books.scope, draft.id)
    assert posted.status == "posted"

    with pytest.raises(DomainError) as exc:
        post_journal(books.scope, draft.id)
    assert exc.value.code == "journal_not_editable"


def test_journal_numbers_increment_within_month(app, books):
    cash, sales = _cash_and_sales(books)
    first = create_journal(books.scope, journal_payload(cash, sales))
    second = create_journal(books.scope, journal_payload(cash, sales))

    assert int(second.journal_number.rsplit("-", 1)[1]) == int(first.journal_number.rsplit("-", 1)[1]) + 1


def test_duplicate_explicit_journal_number_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    create_journal(books.scope, journal_payload(cash, sales, journal_number="MAN-001"))

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, journal_number="MAN-001"))
    assert exc.value.code == "duplicate_journal_number"


@pytest.mark.parametrize(
    "lines, code",
    [
        ([{"account_id": 1, "debit": "10"}], "insufficient_lines"),
        ([{"account_id": 1, "debit": "-10"}, {"account_id": 2, "credit": "-10"}], "negative_amount"),
        ([{"account_id": 1, "debit": "10", "credit": "10"}, {"account_id": 2, "credit": "10"}], "invalid_line_amounts"),
        ([{"account_id": 1, "debit": "0"}, {"account_id": 2, "credit": "0"}], "zero_amounts"),
        ([{"debit": "10"}, {"account_id": 2, "credit": "10"}], "validation_error"),
        ([{"account_id": 1, "dc": "X", "amount": "10"}, {"account_id": 2, "credit": "10"}], "validation_error"),
    ],
)
def test_normalize_lines_rejects_bad_shapes(lines, code):
    with pytest.raises(DomainError) as exc:
        normalize_lines(lines)
    assert exc.value.code == code


def test_normalize_lines_accepts_dc_amount_form():
    lines, debit, credit = normalize_lines(
        [{"account_id": 1, "dc": "d", "amount": "12.345"}, {"account_id": 2, "dc": "C", "amount": "12.345"}]
    )
    assert debit == credit == Decimal("12.35")
    assert lines[0].debit == Decimal("12.35") and lines[0].credit == Decimal("0")


def test_too_many_lines_rejected():
    lines = [{"account_id": 1, "debit": "1"} for _ in range(101)]
    with pytest.raises(DomainError) as exc:
        normalize_lines(lines)
    assert exc.value.code == "too_many_lines"


def test_unbalanced_journal_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    payload = journal_payload(cash, sales)
    payload["lines"][1]["credit"] = "99.00"

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, payload)
    assert exc.value.code == "unbalanced_journal"
    assert exc.value.details["difference"] == "1.00"
    assert Journal.query.count() == 0


def test_future_dated_journal_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    tomorrow = (datetime.utcnow().date() + timedelta(days=1)).isoformat()

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, journal_date=tomorrow))
    assert exc.value.code == "future_date"


def test_unknown_account_rejected(app, books):
    cash, _ = _cash_and_sales(books)
    payload = {
        "lines": [
            {"account_id": cash.id, "debit": "10"},
            {"account_id": 999999, "credit": "10"},
        ]
    }
    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, payload)
    assert exc.value.code == "account_not_found"
    assert exc.value.details["account_ids"] == [999999]


def test_account_from_another_tenant_is_not_found(app, books):
    other = build_books(email="other@example.com", tenant_name="Other Corp", company_code="OTH")
    cash, _ = _cash_and_sales(books)
    foreign_sales = other.accounts["4000"]

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, foreign_sales))
    assert exc.value.code == "account_not_found"


def test_inactive_account_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    sales.is_active = False
    db.session.commit()

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales))
    assert exc.value.code == "inactive_account"


def test_unknown_currency_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, currency="usdx"))
    assert exc.value.code == "invalid_currency"


def test_approver_roles_cannot_originate_journals(app, books):
    cash, sales = _cash_and_sales(books)
    cfo = member(books, "cfo@example.com", "cfo")

    with pytest.raises(DomainError) as exc:
        create_journal(cfo, journal_payload(cash, sales))
    assert exc.value.code == "sod_violation"


def test_clerk_can_draft_but_not_post(app, books):
    cash, sales = _cash_and_sales(books)
    clerk = member(books, "clerk@example.com", "clerk")

    with pytest.raises(DomainError) as exc:
        create_journal(clerk, journal_payload(cash, sales), post=True)
    assert exc.value.code == "forbidden"
    assert Journal.query.count() == 0

    draft = create_journal(clerk, journal_payload(cash, sales))
    assert draft.status == "draft"


def test_threshold_routes_to_approval_and_creator_cannot_approve(app):
    books = build_books(approval_threshold=Decimal("1000"))
    cash, sales = _cash_and_sales(books)
    controller = member(books, "controller@example.com", "controller")

    small = create_journal(books.scope, journal_payload(cash, sales, "999.99"), post=True)
    assert small.status == "posted"

    large = create_journal(books.scope, journal_payload(cash, sales, "1000.00"), post=True)
    assert large.status == "pending_approval"

    with pytest.raises(DomainError) as exc:
        approve_journal(books.scope, large.id)
    assert exc.value.code == "sod_violation"
    denied = AuditLog.query.filter_by(action="journal.approval_denied").one()
    assert denied.outcome == "failure"
    assert denied.tenant_id == books.tenant.id

    approved = approve_journal(controller, large.id)
    assert approved.status == "posted"
    assert approved.approved_by == controller.user_id
    assert approved.posted_by == controller.user_id

    with pytest.raises(DomainError) as exc:
        approve_journal(controller, large.id)
    assert exc.value.code == "journal_not_pending"


def test_reversal_mirrors_lines_once(app, books):
    cash, sales = _cash_and_sales(books)
    original = create_journal(books.scope, journal_payload(cash, sales, "75.50"), post=True)

    reversal = reverse_journal(books.scope, original.id, reason="wrong customer")

    db.session.refresh(original)
    assert original.status == "reversed"
    assert reversal.status == "posted"
    assert reversal.reversal_of_id == original.id
    assert reversal.source == "reversal"
    assert "wrong customer" in reversal.description
    mirrored = {(line.account_id, line.debit, line.credit) for line in reversal.lines}
    assert mirrored == {(cash.id, Decimal("0"), Decimal("75.50")), (sales.id, Decimal("75.50"), Decimal("0"))}

    with pytest.raises(DomainError) as exc:
        reverse_journal(books.scope, original.id)
    assert exc.value.code == "already_reversed"


def test_draft_cannot_be_reversed(app, books):
    cash, sales = _cash_and_sales(books)
    draft = create_journal(books.scope, journal_payload(cash, sales))

    with pytest.raises(DomainError) as exc:
        reverse_journal(books.scope, draft.id)
    assert exc.value.code == "journal_not_posted"


def test_foreign_currency_with_supplied_rate(app, books):
    cash, sales = _cash_and_sales(books)
    payload = journal_payload(cash, sales, "100.00", currency="EUR", exchange_rate="1.10")

    journal = create_journal(books.scope, payload, post=True)

    assert journal.currency == "EUR"
    assert journal.rate_source == "manual"
    assert journal.exchange_rate == Decimal("1.10")
    assert journal.total_debit == Decimal("100.00")
    assert journal.base_total_debit == journal.base_total_credit == Decimal("110.00")


def test_foreign_currency_without_rate_fails(app, books):
    cash, sales = _cash_and_sales(books)

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, currency="GBP"))
    assert exc.value.code == "rate_not_found"


def test_non_positive_supplied_rate_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, currency="EUR", exchange_rate="0"))
    assert exc.value.code == "invalid_rate"


def test_stored_rate_converts_and_absorbs_rounding(app, books):
    cash, bank, sales = books.accounts["1000"], books.accounts["1010"], books.accounts["4000"]
    record_manual_rate(books.scope, "EUR", "USD", "1.5", valid_from=datetime.utcnow() - timedelta(minutes=5))
    payload = {
        "currency": "EUR",
        "lines": [
            {"account_id": cash.id, "debit": "0.01"},
            {"account_id": bank.id, "debit": "0.01"},
            {"account_id": sales.id, "credit": "0.02"},
        ],
    }

    journal = create_journal(books.scope, payload, post=True)

    assert journal.rate_source == "manual"
    assert journal.exchange_rate == Decimal("1.5")
    # 0.015 rounds up on both debit lines; the credit line takes the extra cent.
    assert journal.base_total_debit == journal.base_total_credit == Decimal("0.04")
    credit_line = next(line for line in journal.lines if line.credit > 0)
    assert credit_line.base_credit == Decimal("0.04")


def test_locked_period_refuses_postings(app, books):
    cash, sales = _cash_and_sales(books)
    today = datetime.utcnow().date()
    generate_fiscal_year(books.scope, today.year)
    period = find_period_for_date(books.scope, today)
    lock_period(books.scope, period.id, "POSTING", reason="audit fieldwork")

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales))
    assert exc.value.code == "period_closed"
    assert exc.value.details["period_id"] == period.id


def _lock_spy(monkeypatch) -> list:
    locked = []
    original_with_for_update = Query.with_for_update

    def _wrapped_with_for_update(self, *args, **kwargs):
        locked.append(self.column_descriptions[0]["entity"])
        return original_with_for_update(self, *args, **kwargs)

    monkeypatch.setattr(Query, "with_for_update", _wrapped_with_for_update)
    return locked


def test_journal_numbering_locks_the_company_row(app, books, monkeypatch):
    cash, sales = _cash_and_sales(books)
    locked = _lock_spy(monkeypatch)

    first = create_journal(books.scope, journal_payload(cash, sales))
    second = create_journal(books.scope, journal_payload(cash, sales))

    assert locked.count(Company) >= 2
    assert first.journal_number.endswith("-0001")
    assert second.journal_number.endswith("-0002")


def test_manual_number_check_runs_under_the_company_lock(app, books, monkeypatch):
    cash, sales = _cash_and_sales(books)
    locked = _lock_spy(monkeypatch)

    create_journal(books.scope, journal_payload(cash, sales, journal_number="MAN-100"))

    assert Company in locked


def test_base_drift_lands_on_a_line_when_every_base_amount_rounds_to_zero(app, books):
    cash, sales, other = books.accounts["1000"], books.accounts["4000"], books.accounts["4900"]
    payload = {
        "currency": "IDR",
        "exchange_rate": "0.00006",
        "lines": [
            {"account_id": cash.id, "debit": "100"},
            {"account_id": sales.id, "credit": "50"},
            {"account_id": other.id, "credit": "50"},
        ],
    }

    journal = create_journal(books.scope, payload, post=True)

    assert journal.base_total_debit == journal.base_total_credit == Decimal("0.01")
    credits = sorted(line.base_credit for line in journal.lines if line.credit > 0)
    assert credits == [Decimal("0"), Decimal("0.01")]


@pytest.mark.parametrize(
    "amount, code",
    [
        ("1e30", "amount_out_of_range"),
        ("10000000000000000.00", "amount_out_of_range"),
        ("NaN", "validation_error"),
    ],
)
def test_unstorable_amounts_rejected(app, books, amount, code):
    cash, sales = _cash_and_sales(books)

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, journal_payload(cash, sales, amount))
    assert exc.value.code == code
    assert Journal.query.count() == 0


def test_converted_amount_beyond_storage_rejected(app, books):
    cash, sales = _cash_and_sales(books)
    payload = journal_payload(cash, sales, "9000000000000000.00", currency="EUR", exchange_rate="2")

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, payload)
    assert exc.value.code == "amount_out_of_range"


def test_reversal_cannot_be_future_dated(app, books):
    cash, sales = _cash_and_sales(books)
    original = create_journal(books.scope, journal_payload(cash, sales), post=True)
    tomorrow = datetime.utcnow().date() + timedelta(days=1)

    with pytest.raises(DomainError) as exc:
        reverse_journal(books.scope, original.id, reversal_date=tomorrow)
    assert exc.value.code == "future_date"
    db.session.refresh(original)
    assert original.status == "posted"
