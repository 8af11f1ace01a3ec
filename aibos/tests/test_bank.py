from __future__ import annotations

import io
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

pytestmark = pytest.mark.integration

from aibos.core.utils.errors import DomainError
from aibos.domains.billing.models.bank_models import BankTransaction
from aibos.domains.billing.services.bank_import_service import detect_format, import_statement, parse_statement
from aibos.domains.billing.services.bank_match_service import (
    MatchCandidate,
    MatchConfig,
    auto_match,
    confirm_match,
    score_match,
)
from aibos.domains.billing.services.document_service import create_bill, create_invoice, post_bill, post_invoice
from aibos.domains.billing.services.payment_service import list_payments, record_payment
from aibos.platform.outbox.models import OutboxMessage

TODAY = datetime.utcnow().date()
DAY = TODAY - timedelta(days=3)
GENERIC_HEADER = "date,description,reference,debit,credit,balance"


def _generic(*rows: str) -> str:
    return "\n".join((GENERIC_HEADER,) + rows) + "\n"


def _invoice(books, total="1000", **fields):
    data = {
        "customer_name": "Globex",
        "invoice_date": DAY,
        "lines": [{"revenue_account_id": books.accounts["4000"].id, "unit_price": total}],
    }
    data.update(fields)
    return post_invoice(books.scope, create_invoice(books.scope, data).id)


def _bill(books, total="315"):
    data = {
        "supplier_name": "Initech",
        "bill_date": DAY,
        "lines": [{"expense_account_id": books.accounts["6000"].id, "unit_price": total}],
    }
    return post_bill(books.scope, create_bill(books.scope, data).id)


@pytest.mark.parametrize(
    "content, skip_rows, expected",
    [
        ("Date,Description,Reference,Debit,Credit,Balance\n", 0, "MAYBANK"),
        ("Transaction Date,Description,Reference No,Amount,Dr/Cr,Balance\n", 0, "CIMB"),
        ("Date,Description,Ref No,Debit Amount,Credit Amount,Balance\n", 0, "HONG_LEONG"),
        ("Account 1234-5678\nDate,Transaction Details,Withdrawal,Deposit,Balance\n", 1, "PUBLIC_BANK"),
        ("date,description,debit,credit\n", 0, "GENERIC"),
        ("when,what,how much\n", 0, "GENERIC"),
    ],
)
def test_detect_format(content, skip_rows, expected):
    assert detect_format(content, skip_rows) == expected


def test_parse_reports_row_errors_and_warnings():
    future = TODAY + timedelta(days=5)
    content = _generic(
        f'{DAY},Office rent,RENT-03,"1,500.00",,8500.00',
        "not-a-date,Broken,,10.00,,",
        f"{DAY},,,5.00,,",
        f"{DAY},Nothing,,,,",
        f"{DAY},Both sides,,5.00,5.00,",
        f"{future},Postdated cheque,CHQ-9,,250.00,",
        f'{DAY},Office rent,RENT-03,"1,500.00",,8500.00',
        ",,,,,",
    )

    parsed = parse_statement(content, "generic")

    assert parsed.format_key == "GENERIC"
    assert parsed.total_rows == 7
    assert [(r.row_number, r.debit, r.credit) for r in parsed.rows] == [
        (2, Decimal("1500.00"), Decimal("0")),
        (7, Decimal("0"), Decimal("250.00")),
    ]
    assert parsed.rows[0].balance == Decimal("8500.00")
    assert [e["row"] for e in parsed.errors] == [3, 4, 5, 6]
    assert "Invalid date" in parsed.errors[0]["error"]
    assert parsed.duplicates == 1
    assert [w["row"] for w in parsed.warnings] == [7, 8]


def test_parse_signed_amount_layouts():
    content = (
        "Transaction Date,Description,Reference No,Amount,Dr/Cr,Balance\n"
        f"{DAY:%d-%m-%Y},ATM withdrawal,R1,200.00,DR,\n"
        f"{DAY:%d-%m-%Y},Salary,R2,3000.00,CR,\n"
    )

    rows = parse_statement(content).rows

    assert (rows[0].debit, rows[0].credit) == (Decimal("200.00"), Decimal("0"))
    assert (rows[1].debit, rows[1].credit) == (Decimal("0"), Decimal("3000.00"))
    assert rows[0].reference == "R1"


@pytest.mark.parametrize(
    "content, format_key, code",
    [
        ("   ", None, "validation_error"),
        (_generic(), "NOPE", "unknown_bank_format"),
        ("date,description\n2025-01-01,Rent\n", "GENERIC", "validation_error"),
    ],
)
def test_parse_rejects_unusable_files(content, format_key, code):
    with pytest.raises(DomainError) as exc:
        parse_statement(content, format_key)
    assert exc.value.code == code


def test_parse_caps_statement_size():
    rows = [f"{DAY},Card purchase {n},,1.00,," for n in range(1001)]

    with pytest.raises(DomainError) as exc:
        parse_statement(_generic(*rows))
    assert exc.value.details == {"max_rows": 1000}


def test_reimport_skips_known_transactions(app, books):
    bank = books.accounts["1010"]
    content = _generic(
        f"{DAY},Customer deposit,DEP-1,,400.00,",
        f"{DAY},Bank charges,,12.50,,",
        f"{DAY},Bank charges,,12.50,,",
        "yesterday,Broken,,1.00,,",
    )

    first = import_statement(books.scope, bank.id, content, filename="march.csv")

    assert first.bank_format == "GENERIC"
    assert first.filename == "march.csv"
    assert (first.total_rows, first.imported_count, first.duplicate_count, first.error_count) == (4, 2, 1, 1)
    assert [t.status for t in first.transactions] == ["unmatched", "unmatched"]
    assert OutboxMessage.query.filter_by(event_type="billing.bank_statement.imported").count() == 1

    again = import_statement(books.scope, bank.id, content)

    assert again.imported_count == 0
    assert again.duplicate_count == 3
    assert "already imported" in again.warnings[-1]["warning"]
    assert BankTransaction.query.count() == 2


def test_import_needs_a_cash_account(app, books):
    with pytest.raises(DomainError) as exc:
        import_statement(books.scope, books.accounts["4000"].id, _generic(f"{DAY},Deposit,,,5.00,"))
    assert exc.value.code == "validation_error"

    with pytest.raises(DomainError) as exc:
        import_statement(books.scope, 999999, _generic(f"{DAY},Deposit,,,5.00,"))
    assert exc.value.code == "account_not_found"


def test_score_weights_each_signal():
    config = MatchConfig()
    transaction = BankTransaction(
        transaction_date=DAY,
        description="Globex",
        reference="INV-1",
        debit=Decimal("0"),
        credit=Decimal("100.00"),
    )

    perfect = MatchCandidate("invoice", 1, DAY, Decimal("100.00"), "Globex", False, reference="INV-1")
    assert score_match(transaction, perfect, config).confidence == 100.0

    amount_only = MatchCandidate("invoice", 2, DAY - timedelta(days=30), Decimal("100.00"), "Umbrella", False)
    assert score_match(transaction, amount_only, config).confidence == 40.0

    close_amount = MatchCandidate("invoice", 3, DAY - timedelta(days=30), Decimal("100.50"), "Umbrella", False)
    scored = score_match(transaction, close_amount, config)
    assert scored.confidence == 32.0
    assert scored.amount_difference == Decimal("0.50")
    assert scored.reasons == ["Close amount match (within 1%)"]


def test_auto_match_links_recorded_payments(app, books):
    bank = books.accounts["1010"]
    invoice = _invoice(books)
    payment = record_payment(
        books.scope, "received", invoice.id, "1000", bank.id, payment_date=DAY, reference="WIRE-77"
    )
    statement = import_statement(books.scope, bank.id, _generic(f"{DAY},WIRE-77 Globex,WIRE-77,,1000.00,"))

    result = auto_match(books.scope, statement.id)

    assert result["summary"]["automatic_matches"] == 1
    assert result["matches"][0]["match_type"] == "payment"
    assert result["matches"][0]["confidence"] >= 90
    transaction = statement.transactions[0]
    assert transaction.status == "matched"
    assert transaction.payment_id == payment.id
    assert OutboxMessage.query.filter_by(event_type="billing.bank_transaction.matched").count() == 1

    rerun = auto_match(books.scope, statement.id)
    assert rerun["summary"]["total_transactions"] == 0


def test_document_suggestion_is_confirmed_into_a_payment(app, books):
    bank = books.accounts["1010"]
    invoice = _invoice(books)
    bill = _bill(books)
    statement = import_statement(
        books.scope,
        bank.id,
        _generic(
            f"{DAY},Globex,{invoice.invoice_number},,1000.00,",
            f"{DAY},Initech,,315.00,,",
            f"{DAY},Unknown transfer,,,77.00,",
        ),
    )

    result = auto_match(books.scope, statement.id)

    assert result["summary"] == {
        "total_transactions": 3,
        "automatic_matches": 0,
        "suggested_matches": 2,
        "unmatched": 1,
        "average_confidence": result["summary"]["average_confidence"],
    }
    receipt, outgoing, unknown = statement.transactions
    assert (receipt.status, receipt.match_type, receipt.match_id) == ("suggested", "invoice", invoice.id)
    assert (outgoing.match_type, outgoing.match_id) == ("bill", bill.id)
    assert unknown.status == "unmatched"

    confirmed = confirm_match(books.scope, receipt.id)

    assert confirmed.status == "matched"
    assert invoice.status == "paid"
    payment = list_payments(books.scope, document_id=invoice.id).one()
    assert confirmed.payment_id == payment.id
    assert payment.payment_date == DAY
    assert payment.bank_account_id == bank.id
    assert payment.reference == invoice.invoice_number

    confirm_match(books.scope, outgoing.id)
    assert bill.status == "paid"

    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, receipt.id)
    assert exc.value.code == "transaction_already_matched"
    assert exc.value.status_code == 409


def test_confirm_rejects_mismatched_targets(app, books):
    bank = books.accounts["1010"]
    invoice = _invoice(books)
    payment = record_payment(books.scope, "received", invoice.id, "600", bank.id, payment_date=DAY)
    statement = import_statement(
        books.scope,
        bank.id,
        _generic(f"{DAY},Supplier debit,,400.00,,", f"{DAY},Deposit,,,400.00,", f"{DAY},Deposit two,,,600.00,"),
    )
    outgoing, incoming, exact = statement.transactions

    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, outgoing.id, "invoice", invoice.id)
    assert exc.value.code == "match_mismatch"

    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, incoming.id, "payment", payment.id)
    assert exc.value.code == "match_mismatch"
    assert exc.value.details["payment_amount"] == "600.00"

    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, incoming.id)
    assert exc.value.code == "validation_error"

    confirm_match(books.scope, exact.id, "payment", payment.id)
    assert exact.payment_id == payment.id
    assert invoice.outstanding == Decimal("400")

    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, incoming.id, "payment", payment.id)
    assert exc.value.code == "match_mismatch"

    second = import_statement(books.scope, bank.id, _generic(f"{TODAY},Deposit again,,,600.00,"))
    with pytest.raises(DomainError) as exc:
        confirm_match(books.scope, second.transactions[0].id, "payment", payment.id)
    assert exc.value.code == "payment_already_matched"


def test_bank_endpoints(client, books, owner_headers):
    bank = books.accounts["1010"]
    invoice = _invoice(books)
    content = _generic(f"{DAY},Globex,{invoice.invoice_number},,1000.00,")

    unknown = client.post(
        "/api/v1/bank/imports",
        json={"bank_account_id": bank.id, "content": content, "bank_format": "MYSTERY"},
        headers=owner_headers,
    )
    assert unknown.status_code == 400
    assert unknown.get_json()["error"] == "unknown_bank_format"

    uploaded = client.post(
        "/api/v1/bank/imports",
        data={"bank_account_id": str(bank.id), "file": (io.BytesIO(content.encode("utf-8")), "march.csv")},
        content_type="multipart/form-data",
        headers=owner_headers,
    )
    assert uploaded.status_code == 201, uploaded.get_json()
    statement = uploaded.get_json()["import"]
    assert statement["filename"] == "march.csv"
    assert statement["imported_count"] == 1

    detail = client.get(f"/api/v1/bank/imports/{statement['id']}", headers=owner_headers)
    assert detail.status_code == 200
    transaction_id = detail.get_json()["transactions"][0]["id"]

    matched = client.post(f"/api/v1/bank/imports/{statement['id']}/match", json={}, headers=owner_headers)
    assert matched.status_code == 200
    assert matched.get_json()["summary"]["suggested_matches"] == 1

    suggested = client.get("/api/v1/bank/transactions?status=suggested", headers=owner_headers)
    assert suggested.get_json()["total"] == 1
    assert suggested.get_json()["transactions"][0]["match_id"] == invoice.id

    confirmed = client.post(f"/api/v1/bank/transactions/{transaction_id}/confirm", json={}, headers=owner_headers)
    assert confirmed.status_code == 200, confirmed.get_json()
    assert confirmed.get_json()["transaction"]["status"] == "matched"

    again = client.post(f"/api/v1/bank/transactions/{transaction_id}/confirm", json={}, headers=owner_headers)
    assert again.status_code == 409
    assert again.get_json()["error"] == "transaction_already_matched"

    duplicate = client.post(
        "/api/v1/bank/imports", json={"bank_account_id": bank.id, "content": content}, headers=owner_headers
    )
    assert duplicate.status_code == 201
    assert duplicate.get_json()["import"]["duplicate_count"] == 1

    missing = client.get("/api/v1/bank/imports/999999", headers=owner_headers)
    assert missing.status_code == 404
