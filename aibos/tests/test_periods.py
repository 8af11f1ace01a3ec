from __future__ import annotations

from datetime import date, datetime

import pytest

pytestmark = pytest.mark.integration

from aibos.core.audit.models import AuditLog
from aibos.core.utils.errors import DomainError
from aibos.domains.ledger.services.posting_service import create_journal, get_journal
from aibos.domains.periods.services.period_service import (
    close_period,
    find_period_for_date,
    fiscal_year_bounds,
    generate_fiscal_year,
    list_periods,
    lock_period,
    reopen_period,
    validate_period_close,
)
from aibos.tests.factories import build_books, journal_payload, member

FY = 2025


def _march(books):
    return next(p for p in list_periods(books.scope, fiscal_year=FY) if p.period_number == 3)


def _entry(books, amount="100.00", journal_date="2025-03-15", **fields):
    return journal_payload(books.accounts["1000"], books.accounts["4000"], amount, journal_date=journal_date, **fields)


def test_generate_twelve_monthly_periods(app, books):
    periods = generate_fiscal_year(books.scope, FY)

    assert len(periods) == 12
    assert periods[0].start_date == date(2025, 1, 1)
    assert periods[1].end_date == date(2025, 2, 28)
    assert periods[-1].end_date == date(2025, 12, 31)
    assert {p.status for p in periods} == {"OPEN"}

    with pytest.raises(DomainError) as exc:
        generate_fiscal_year(books.scope, FY)
    assert exc.value.code == "periods_exist"


def test_fiscal_year_named_after_its_end():
    assert fiscal_year_bounds("06-30", 2026) == (date(2025, 7, 1), date(2026, 6, 30))
    assert fiscal_year_bounds("02-28", 2024) == (date(2023, 3, 1), date(2024, 2, 29))


def test_non_calendar_fiscal_year(app):
    books = build_books(fiscal_year_end="06-30")
    periods = generate_fiscal_year(books.scope, 2026)

    assert periods[0].name.startswith("FY2026 P01")
    assert periods[0].start_date == date(2025, 7, 1)
    assert periods[-1].end_date == date(2026, 6, 30)


def test_draft_journal_blocks_close_unless_forced(app, books):
    generate_fiscal_year(books.scope, FY)
    march = _march(books)
    draft = create_journal(books.scope, _entry(books))

    validation = validate_period_close(books.scope, march)
    assert not validation.ok
    assert validation.errors[0]["journal_ids"] == [draft.id]

    with pytest.raises(DomainError) as exc:
        close_period(books.scope, march.id, reason="month end")
    assert exc.value.code == "period_close_validation_failed"
    assert AuditLog.query.filter_by(action="period.close_rejected", outcome="failure").count() == 1

    result = close_period(books.scope, march.id, reason="month end", force=True)
    assert result.forced is True
    assert result.period.status == "CLOSED"
    assert result.next_period_id is not None
    assert {lock.lock_type for lock in result.period.active_locks()} == {"POSTING"}

    with pytest.raises(DomainError) as exc:
        create_journal(books.scope, _entry(books), post=True)
    assert exc.value.code == "period_closed"


def test_close_generates_reversals_for_accruals(app, books):
    generate_fiscal_year(books.scope, FY)
    march = _march(books)
    accrual = create_journal(books.scope, _entry(books, "300.00", auto_reverse=True), post=True)

    warnings = validate_period_close(books.scope, march).warnings
    assert warnings[0]["journal_ids"] == [accrual.id]

    result = close_period(books.scope, march.id, generate_reversals=True)

    assert len(result.reversal_ids) == 1
    reversal = get_journal(books.scope, result.reversal_ids[0])
    assert reversal.journal_date == date(2025, 4, 1)
    assert reversal.reversal_of_id == accrual.id
    assert get_journal(books.scope, accrual.id).status == "reversed"


def test_close_may_date_reversals_after_today(app, books):
    today = datetime.utcnow().date()
    generate_fiscal_year(books.scope, today.year)
    current = find_period_for_date(books.scope, today)
    accrual = create_journal(
        books.scope, _entry(books, "120.00", journal_date=today.isoformat(), auto_reverse=True), post=True
    )

    result = close_period(books.scope, current.id, force=True, generate_reversals=True)

    reversal = get_journal(books.scope, result.reversal_ids[0])
    assert reversal.journal_date > today
    assert reversal.reversal_of_id == accrual.id


def test_reopen_requires_reason_and_permission(app, books):
    generate_fiscal_year(books.scope, FY)
    march = _march(books)
    close_period(books.scope, march.id)
    controller = member(books, "controller@example.com", "controller")
    cfo = member(books, "cfo@example.com", "cfo")

    with pytest.raises(DomainError) as exc:
        reopen_period(controller, march.id, "late invoice")
    assert exc.value.code == "forbidden"

    with pytest.raises(DomainError) as exc:
        reopen_period(cfo, march.id, "   ")
    assert exc.value.code == "validation_error"

    reopened = reopen_period(cfo, march.id, "late invoice")
    assert reopened.status == "OPEN"
    assert reopened.active_locks() == []

    posted = create_journal(books.scope, _entry(books), post=True)
    assert posted.status == "posted"

    with pytest.raises(DomainError) as exc:
        reopen_period(cfo, march.id, "again")
    assert exc.value.code == "period_already_open"


def test_full_lock_needs_closed_period_and_is_final(app, books):
    generate_fiscal_year(books.scope, FY)
    march = _march(books)

    with pytest.raises(DomainError) as exc:
        lock_period(books.scope, march.id, "FULL")
    assert exc.value.code == "period_not_closed"

    close_period(books.scope, march.id)
    lock = lock_period(books.scope, march.id, "full", reason="statutory audit signed")
    assert lock.lock_type == "FULL"
    assert march.status == "LOCKED"

    with pytest.raises(DomainError) as exc:
        reopen_period(books.scope, march.id, "need to fix")
    assert exc.value.code == "period_locked"

    with pytest.raises(DomainError) as exc:
        lock_period(books.scope, march.id, "EVERYTHING")
    assert exc.value.code == "validation_error"


def test_reporting_lock_still_accepts_postings(app, books):
    generate_fiscal_year(books.scope, FY)
    march = _march(books)
    lock_period(books.scope, march.id, "REPORTING")

    journal = create_journal(books.scope, _entry(books), post=True)
    assert journal.status == "posted"


def test_period_endpoints(client, books, owner_headers):
    created = client.post("/api/v1/periods", json={"fiscal_year": FY}, headers=owner_headers)
    assert created.status_code == 201
    periods = created.get_json()["periods"]
    assert len(periods) == 12

    found = client.get("/api/v1/periods?date=2025-03-10", headers=owner_headers)
    march = found.get_json()["period"]
    assert march["period_number"] == 3

    check = client.get(f"/api/v1/periods/{march['id']}/close-check", headers=owner_headers)
    assert check.get_json()["validation"]["ok"] is True

    closed = client.post(f"/api/v1/periods/{march['id']}/close", json={"reason": "done"}, headers=owner_headers)
    assert closed.status_code == 200
    assert closed.get_json()["period"]["status"] == "CLOSED"

    missing_reason = client.post(f"/api/v1/periods/{march['id']}/reopen", json={}, headers=owner_headers)
    assert missing_reason.status_code == 400

    locked = client.post(f"/api/v1/periods/{march['id']}/lock", json={"lock_type": "FULL"}, headers=owner_headers)
    assert locked.status_code == 201
    assert locked.get_json()["period"]["status"] == "LOCKED"

    listing = client.get(f"/api/v1/periods?fiscal_year={FY}&status=locked", headers=owner_headers)
    assert [p["id"] for p in listing.get_json()["periods"]] == [march["id"]]
