from __future__ import annotations

import pytest
import requests

pytestmark = pytest.mark.integration

from aibos.domains.fx import providers
from aibos.domains.fx.models.fx_models import FxRate
from aibos.domains.periods.models.period_models import FiscalPeriod
from aibos.platform.outbox.models import OutboxMessage


def _invoke(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


def test_seed_currencies_is_idempotent(app):
    result = _invoke(app, "seed-currencies")

    assert result.exit_code == 0
    assert result.output.strip() == "Created 0 currencies"


def test_periods_generate(app, books):
    result = _invoke(app, "periods", "generate", "--company-id", str(books.company.id), "--year", "2025")

    assert result.exit_code == 0, result.output
    assert "Generated 12 periods for ACME FY2025" in result.output
    assert FiscalPeriod.query.filter_by(company_id=books.company.id).count() == 12

    again = _invoke(app, "periods", "generate", "-c", str(books.company.id), "-y", "2025")
    assert again.exit_code == 1
    assert "periods_exist" in again.output

    missing = _invoke(app, "periods", "generate", "-c", "9999", "-y", "2025")
    assert "Company 9999 not found" in missing.output


def test_fx_refresh(app, monkeypatch):
    def _fake_get(url, params=None, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(providers.requests, "get", _fake_get)

    result = _invoke(app, "fx", "refresh", "--targets", "EUR,GBP")

    assert result.exit_code == 1
    assert "fx_providers_unavailable" in result.output
    assert FxRate.query.count() == 0


def test_outbox_dispatch_drains_one_batch(app, books):
    pending = OutboxMessage.query.filter_by(status="pending").count()

    result = _invoke(app, "outbox", "dispatch")

    assert result.exit_code == 0
    assert result.output.strip() == f"Dispatched {pending} outbox messages"


def test_idempotency_purge(app):
    result = _invoke(app, "idempotency", "purge")

    assert result.exit_code == 0
    assert "Purged 0 expired idempotency keys" in result.output
