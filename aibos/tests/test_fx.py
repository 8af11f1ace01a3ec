from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import requests

pytestmark = pytest.mark.integration

from aibos.core.utils.errors import DomainError
from aibos.domains.fx import providers
from aibos.domains.fx.models.fx_models import FxRate
from aibos.domains.fx.services.rate_service import convert, get_rate, ingest_rates, record_manual_rate
from aibos.tests.factories import build_books, member


class _FakeResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def _route(monkeypatch, primary=None, fallback=None):
    """Serve canned provider payloads; ``None`` makes that provider unreachable."""
    calls: list[tuple[str, dict]] = []

    def _fake_get(url, params=None, timeout=None):
        calls.append((url, params or {}))
        payload = primary if url.startswith("https://primary.fx.test") else fallback
        if payload is None:
            raise requests.ConnectionError("connection refused")
        return payload if isinstance(payload, _FakeResponse) else _FakeResponse(payload)

    monkeypatch.setattr(providers.requests, "get", _fake_get)
    return calls


def test_primary_provider_rates_are_stored(app, monkeypatch):
    calls = _route(monkeypatch, primary={"base": "USD", "rates": {"USD": 1, "EUR": "0.9", "GBP": "0.8"}})

    result = ingest_rates("usd", ["EUR", "GBP", "USD"])

    assert result.source == "primary"
    assert result.provider == "exchangerate-api"
    assert result.rates == {"EUR": Decimal("0.9"), "GBP": Decimal("0.8")}
    assert calls[0][0] == "https://primary.fx.test/latest/USD"
    rows = FxRate.query.filter_by(from_currency="USD").all()
    assert {(r.to_currency, r.source, r.tenant_id) for r in rows} == {("EUR", "primary", None), ("GBP", "primary", None)}


def test_fallback_provider_used_when_primary_fails(app, monkeypatch):
    calls = _route(
        monkeypatch,
        primary=None,
        fallback={"success": True, "base": "USD", "rates": {"EUR": 0.91}},
    )

    result = ingest_rates("USD", ["EUR"])

    assert result.source == "fallback"
    assert result.provider == "fixer"
    assert len(result.errors) == 1
    fallback_url, params = calls[1]
    assert fallback_url == "https://fallback.fx.test/latest"
    assert params["access_key"] == "test-key"
    assert params["symbols"] == "EUR"
    assert get_rate("USD", "EUR").source == "fallback"


def test_fallback_error_payload_counts_as_failure(app, monkeypatch):
    _route(
        monkeypatch,
        primary=_FakeResponse({}, status_code=500),
        fallback={"success": False, "error": {"code": 101}},
    )

    with pytest.raises(DomainError) as exc:
        ingest_rates("USD", ["EUR"])
    assert exc.value.code == "fx_providers_unavailable"
    assert exc.value.status_code == 503
    assert len(exc.value.details["errors"]) == 2
    assert FxRate.query.count() == 0


def test_missing_target_rate_fails_provider(app, monkeypatch):
    _route(
        monkeypatch,
        primary={"base": "USD", "rates": {"EUR": "0.9"}},
        fallback={"success": True, "rates": {"EUR": "0.9", "JPY": "150"}},
    )

    result = ingest_rates("USD", ["EUR", "JPY"])

    assert result.source == "fallback"
    assert "missing rates for JPY" in result.errors[0]


def test_newer_rate_closes_previous_row(app, books):
    earlier = datetime.utcnow() - timedelta(hours=2)
    first = record_manual_rate(books.scope, "EUR", "USD", "1.10", valid_from=earlier)
    second = record_manual_rate(books.scope, "EUR", "USD", "1.12")

    assert first.valid_to == second.valid_from
    assert second.valid_to is None
    assert get_rate("EUR", "USD", tenant_id=books.tenant.id).rate == Decimal("1.12")
    # A date before the newer row still resolves to the older one.
    assert get_rate("EUR", "USD", as_of=earlier + timedelta(minutes=1), tenant_id=books.tenant.id).rate == Decimal(
        "1.10"
    )


def test_inverse_pair_is_used_when_direct_missing(app, books):
    record_manual_rate(books.scope, "USD", "JPY", "150")

    quote = get_rate("JPY", "USD", tenant_id=books.tenant.id)

    assert quote.inverted is True
    assert quote.rate == Decimal("0.00666667")
    converted, _ = convert("30000", "JPY", "USD", tenant_id=books.tenant.id)
    assert converted == Decimal("200.00")


def test_stale_rates_warn_then_fail(app, books):
    record_manual_rate(books.scope, "GBP", "USD", "1.25", valid_from=datetime.utcnow() - timedelta(hours=30))

    quote = get_rate("GBP", "USD", tenant_id=books.tenant.id)
    assert quote.is_stale is True

    later = datetime.utcnow() + timedelta(hours=50)
    with pytest.raises(DomainError) as exc:
        get_rate("GBP", "USD", tenant_id=books.tenant.id, now=later)
    assert exc.value.code == "stale_rate"

    allowed = get_rate("GBP", "USD", tenant_id=books.tenant.id, now=later, allow_stale=True)
    assert allowed.rate == Decimal("1.25")


def test_manual_rates_are_private_to_their_tenant(app, books):
    other = build_books(email="other@example.com", tenant_name="Other", company_code="OTH")
    record_manual_rate(books.scope, "CHF", "USD", "1.05")

    with pytest.raises(DomainError) as exc:
        get_rate("CHF", "USD", tenant_id=other.tenant.id)
    assert exc.value.code == "rate_not_found"


def test_manual_rate_requires_fx_permission(app, books):
    clerk = member(books, "clerk@example.com", "clerk")
    with pytest.raises(DomainError) as exc:
        record_manual_rate(clerk, "EUR", "USD", "1.1")
    assert exc.value.code == "forbidden"


def test_rate_endpoints(client, books, owner_headers):
    created = client.post(
        "/api/v1/fx/rates",
        json={"from_currency": "eur", "to_currency": "usd", "rate": "1.0850"},
        headers=owner_headers,
    )
    assert created.status_code == 201, created.get_json()
    assert created.get_json()["rate"]["source"] == "manual"

    quote = client.get("/api/v1/fx/rates?from=EUR&to=USD", headers=owner_headers)
    assert quote.status_code == 200
    assert Decimal(quote.get_json()["quote"]["rate"]) == Decimal("1.085")

    converted = client.get("/api/v1/fx/convert?amount=100&from=EUR&to=USD", headers=owner_headers)
    assert converted.get_json()["converted"] == "108.50"

    missing = client.get("/api/v1/fx/rates?from=EUR&to=KWD", headers=owner_headers)
    assert missing.status_code == 422
    assert missing.get_json()["error"] == "rate_not_found"

    currencies = client.get("/api/v1/currencies", headers=owner_headers)
    codes = {c["code"] for c in currencies.get_json()["currencies"]}
    assert {"USD", "EUR", "JPY", "KWD"} <= codes


def test_refresh_endpoint_reports_provider_outage(client, books, owner_headers, monkeypatch):
    _route(monkeypatch)

    resp = client.post("/api/v1/fx/refresh", json={"base": "USD", "targets": ["EUR"]}, headers=owner_headers)

    assert resp.status_code == 503
    assert resp.get_json()["error"] == "fx_providers_unavailable"
