"""Exchange-rate ingestion, lookup and conversion."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from flask import current_app, has_app_context
from sqlalchemy import or_

from aibos.core.audit.services import record_audit
from aibos.core.auth.permissions import FX_MANAGE
from aibos.core.tenancy.scope import TenantScope
from aibos.core.utils.errors import DomainError
from aibos.core.utils.money import quantize, quantize_rate, to_decimal
from aibos.domains.fx.events import FX_RATE_RECORDED, FX_RATES_INGESTED
from aibos.domains.fx.models.fx_models import FxRate
from aibos.domains.fx.providers import RateProviderError, build_providers
from aibos.domains.fx.services.currency_service import decimal_places, require_currency
from aibos.extensions import db
from aibos.platform.outbox import enqueue as enqueue_outbox

logger = logging.getLogger(__name__)

SOURCE_PRIMARY = "primary"
SOURCE_FALLBACK = "fallback"
SOURCE_MANUAL = "manual"
SOURCE_IDENTITY = "identity"

DEFAULT_STALE_AFTER_HOURS = 24
DEFAULT_MAX_AGE_HOURS = 72
ONE = Decimal("1")


@dataclass
class RateQuote:
    from_currency: str
    to_currency: str
    rate: Decimal
    source: str
    provider: Optional[str] = None
    valid_from: Optional[datetime] = None
    age_hours: float = 0.0
    is_stale: bool = False
    inverted: bool = False

    def to_dict(self) -> dict:
        return {
            "from": self.from_currency,
            "to": self.to_currency,
            "rate": str(self.rate),
            "source": self.source,
            "provider": self.provider,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "age_hours": round(self.age_hours, 2),
            "is_stale": self.is_stale,
            "inverted": self.inverted,
        }


@dataclass
class IngestResult:
    base: str
    provider: str
    source: str
    as_of: datetime
    rates: Dict[str, Decimal] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "base": self.base,
            "provider": self.provider,
            "source": self.source,
            "as_of": self.as_of.isoformat(),
            "rates": {code: str(rate) for code, rate in self.rates.items()},
            "count": len(self.rates),
            "errors": self.errors,
        }


def _policy() -> Tuple[int, int]:
    if not has_app_context():
        return DEFAULT_STALE_AFTER_HOURS, DEFAULT_MAX_AGE_HOURS
    cfg = current_app.config
    return (
        int(cfg.get("FX_STALE_AFTER_HOURS", DEFAULT_STALE_AFTER_HOURS)),
        int(cfg.get("FX_MAX_AGE_HOURS", DEFAULT_MAX_AGE_HOURS)),
    )


def _store_rate(
    from_currency: str,
    to_currency: str,
    rate: Decimal,
    source: str,
    valid_from: datetime,
    provider: Optional[str] = None,
    tenant_id: Optional[int] = None,
    created_by: Optional[int] = None,
) -> FxRate:
    """Insert a rate row, closing the pair's currently open row."""
    tenant_filter = FxRate.tenant_id.is_(None) if tenant_id is None else FxRate.tenant_id == tenant_id
    open_rows = FxRate.query.filter(
        FxRate.from_currency == from_currency,
        FxRate.to_currency == to_currency,
        FxRate.valid_to.is_(None),
        tenant_filter,
    ).all()

    valid_to = None
    for row in open_rows:
        if row.valid_from <= valid_from:
            row.valid_to = valid_from
        else:
            # Backfilled history: the new row ends where the newer one starts.
            valid_to = row.valid_from if valid_to is None else min(valid_to, row.valid_from)

    row = FxRate(
        tenant_id=tenant_id,
        from_currency=from_currency,
        to_currency=to_currency,
        rate=quantize_rate(rate),
        source=source,
        provider=provider,
        valid_from=valid_from,
        valid_to=valid_to,
        fetched_at=datetime.utcnow(),
        created_by=created_by,
    )
    db.session.add(row)
    return row


def ingest_rates(
    base: str,
    targets: Sequence[str],
    providers: Optional[list] = None,
) -> IngestResult:
    """Fetch ``base`` → ``targets`` from the primary provider, falling back in order.

    Raises ``fx_providers_unavailable`` when every provider fails.
    """
    base = require_currency(base).code
    wanted = sorted({require_currency(code).code for code in targets if code.upper() != base})
    if not wanted:
        raise DomainError("validation_error", "At least one target currency different from base is required")

    providers = providers if providers is not None else build_providers(current_app.config)
    errors: List[str] = []
    for index, provider in enumerate(providers):
        try:
            quote = provider.fetch(base, wanted)
        except RateProviderError as exc:
            logger.warning("FX provider %s failed: %s", getattr(provider, "name", provider), exc)
            errors.append(str(exc))
            continue

        source = SOURCE_PRIMARY if index == 0 else SOURCE_FALLBACK
        if source == SOURCE_FALLBACK:
            logger.warning("FX rates for %s served by fallback provider %s", base, quote.provider)
        for code, rate in quote.rates.items():
            _store_rate(base, code, rate, source, quote.as_of, provider=quote.provider)
        enqueue_outbox(
            FX_RATES_INGESTED,
            {
                "base": base,
                "provider": quote.provider,
                "source": source,
                "as_of": quote.as_of.isoformat(),
                "currencies": sorted(quote.rates),
            },
            user_id=None,
        )
        db.session.commit()
        logger.info("Stored %d %s rates from %s (%s)", len(quote.rates), base, quote.provider, source)
        return IngestResult(
            base=base,
            provider=quote.provider,
            source=source,
            as_of=quote.as_of,
            rates=dict(quote.rates),
            errors=errors,
        )

    logger.error("All FX providers failed for %s: %s", base, "; ".join(errors))
    raise DomainError(
        "fx_providers_unavailable",
        "All exchange-rate providers failed",
        {"base": base, "errors": errors},
    )


def record_manual_rate(
    scope: TenantScope,
    from_currency: str,
    to_currency: str,
    rate,
    valid_from: Optional[datetime] = None,
) -> FxRate:
    scope.require(FX_MANAGE)
    from_code = require_currency(from_currency).code
    to_code = require_currency(to_currency).code
    if from_code == to_code:
        raise DomainError("validation_error", "Manual rate needs two different currencies")
    value = to_decimal(rate)
    if value <= 0:
        raise DomainError("invalid_rate", "Rate must be positive", {"rate": str(rate)})

    row = _store_rate(
        from_code,
        to_code,
        value,
        SOURCE_MANUAL,
        valid_from or datetime.utcnow(),
        provider="manual",
        tenant_id=scope.tenant_id,
        created_by=scope.user_id,
    )
    db.session.flush()
    enqueue_outbox(
        FX_RATE_RECORDED,
        {"rate_id": row.id, "from": from_code, "to": to_code, "rate": str(row.rate)},
        user_id=scope.user_id,
        tenant_id=scope.tenant_id,
    )
    record_audit(
        "fx.rate_recorded",
        "fx_rate",
        row.id,
        tenant_id=scope.tenant_id,
        user_id=scope.user_id,
        category="data_modification",
        severity="medium",
        details={"from": from_code, "to": to_code, "rate": str(row.rate), "valid_from": row.valid_from},
    )
    db.session.commit()
    return row


def _reference_time(as_of, now: datetime) -> datetime:
    if as_of is None:
        return now
    if isinstance(as_of, datetime):
        return min(as_of, now)
    if isinstance(as_of, date):
        return min(datetime.combine(as_of, time.max), now)
    raise TypeError("as_of must be a date or datetime")


def _latest_row(from_code: str, to_code: str, reference: datetime, tenant_id: Optional[int]) -> Optional[FxRate]:
    tenant_filter = FxRate.tenant_id.is_(None)
    if tenant_id is not None:
        tenant_filter = or_(FxRate.tenant_id.is_(None), FxRate.tenant_id == tenant_id)
    rows = (
        FxRate.query.filter(
            FxRate.from_currency == from_code,
            FxRate.to_currency == to_code,
            FxRate.valid_from <= reference,
            tenant_filter,
        )
        .order_by(FxRate.valid_from.desc(), FxRate.id.desc())
        .limit(2)
        .all()
    )
    if not rows:
        return None
    # Same effective time: a tenant's own rate beats the provider rate.
    if len(rows) == 2 and rows[0].valid_from == rows[1].valid_from and rows[1].tenant_id is not None:
        return rows[1]
    return rows[0]


def get_rate(
    from_currency: str,
    to_currency: str,
    as_of=None,
    allow_stale: bool = False,
    tenant_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> RateQuote:
    """Rate to convert 1 ``from_currency`` into ``to_currency`` as of a date.

    Direct pairs win; an inverse pair is used when only it is stored.
    """
    from_code = (from_currency or "").upper()
    to_code = (to_currency or "").upper()
    if from_code == to_code:
        return RateQuote(from_code, to_code, ONE, SOURCE_IDENTITY)

    now = now or datetime.utcnow()
    reference = _reference_time(as_of, now)
    row = _latest_row(from_code, to_code, reference, tenant_id)
    inverted = False
    if row is None:
        row = _latest_row(to_code, from_code, reference, tenant_id)
        inverted = row is not None
    if row is None:
        raise DomainError(
            "rate_not_found",
            f"No exchange rate for {from_code}/{to_code}",
            {"from": from_code, "to": to_code, "as_of": reference.isoformat()},
        )

    rate = to_decimal(row.rate)
    if inverted:
        rate = quantize_rate(ONE / rate)

    stale_after, max_age = _policy()
    age_hours = max((reference - row.valid_from).total_seconds() / 3600.0, 0.0)
    is_stale = age_hours > stale_after
    if age_hours > max_age and not allow_stale:
        raise DomainError(
            "stale_rate",
            f"Exchange rate {from_code}/{to_code} is {age_hours:.1f}h old",
            {"from": from_code, "to": to_code, "age_hours": round(age_hours, 2), "max_age_hours": max_age},
        )
    if is_stale:
        logger.warning("Using stale %s/%s rate (%.1fh old, source=%s)", from_code, to_code, age_hours, row.source)

    return RateQuote(
        from_currency=from_code,
        to_currency=to_code,
        rate=rate,
        source=row.source,
        provider=row.provider,
        valid_from=row.valid_from,
        age_hours=age_hours,
        is_stale=is_stale,
        inverted=inverted,
    )


def convert(
    amount,
    from_currency: str,
    to_currency: str,
    as_of=None,
    allow_stale: bool = False,
    tenant_id: Optional[int] = None,
) -> Tuple[Decimal, RateQuote]:
    quote = get_rate(from_currency, to_currency, as_of, allow_stale=allow_stale, tenant_id=tenant_id)
    converted = quantize(to_decimal(amount) * quote.rate, decimal_places(quote.to_currency))
    return converted, quote


def list_rates(
    tenant_id: Optional[int],
    from_currency: Optional[str] = None,
    to_currency: Optional[str] = None,
    current_only: bool = True,
    limit: int = 100,
) -> List[FxRate]:
    tenant_filter = FxRate.tenant_id.is_(None)
    if tenant_id is not None:
        tenant_filter = or_(FxRate.tenant_id.is_(None), FxRate.tenant_id == tenant_id)
    query = FxRate.query.filter(tenant_filter)
    if from_currency:
        query = query.filter(FxRate.from_currency == from_currency.upper())
    if to_currency:
        query = query.filter(FxRate.to_currency == to_currency.upper())
    if current_only:
        query = query.filter(FxRate.valid_to.is_(None))
    return query.order_by(FxRate.valid_from.desc()).limit(max(min(limit, 500), 1)).all()
