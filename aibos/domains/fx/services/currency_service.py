"""Currency reference data."""

from __future__ import annotations

import re
from typing import List

from aibos.core.utils.errors import DomainError
from aibos.domains.fx.models.fx_models import Currency
from aibos.extensions import db

_ISO_CODE = re.compile(r"^[A-Z]{3}$")

# (code, name, symbol, decimal places)
DEFAULT_CURRENCIES = (
    ("USD", "US Dollar", "$", 2),
    ("EUR", "Euro", "€", 2),
    ("GBP", "Pound Sterling", "£", 2),
    ("JPY", "Japanese Yen", "¥", 0),
    ("CHF", "Swiss Franc", "CHF", 2),
    ("CAD", "Canadian Dollar", "$", 2),
    ("AUD", "Australian Dollar", "$", 2),
    ("NZD", "New Zealand Dollar", "$", 2),
    ("CNY", "Chinese Yuan", "¥", 2),
    ("HKD", "Hong Kong Dollar", "$", 2),
    ("SGD", "Singapore Dollar", "$", 2),
    ("MYR", "Malaysian Ringgit", "RM", 2),
    ("IDR", "Indonesian Rupiah", "Rp", 2),
    ("THB", "Thai Baht", "฿", 2),
    ("INR", "Indian Rupee", "₹", 2),
    ("KRW", "South Korean Won", "₩", 0),
    ("BHD", "Bahraini Dinar", "BD", 3),
    ("KWD", "Kuwaiti Dinar", "KD", 3),
)


def seed_currencies() -> int:
    """Insert the default currency list; existing codes are left untouched."""
    existing = {c.code for c in Currency.query.all()}
    created = 0
    for code, name, symbol, places in DEFAULT_CURRENCIES:
        if code in existing:
            continue
        db.session.add(Currency(code=code, name=name, symbol=symbol, decimal_places=places, is_active=True))
        created += 1
    db.session.commit()
    return created


def require_currency(code: str) -> Currency:
    """Return the active currency or raise ``invalid_currency``."""
    normalized = (code or "").strip().upper()
    if not _ISO_CODE.match(normalized):
        raise DomainError("invalid_currency", f"'{code}' is not an ISO-4217 currency code", {"currency": code})
    currency = db.session.get(Currency, normalized)
    if currency is None or not currency.is_active:
        raise DomainError("invalid_currency", f"Currency '{normalized}' is not supported", {"currency": normalized})
    return currency


def decimal_places(code: str) -> int:
    currency = db.session.get(Currency, (code or "").upper())
    return currency.decimal_places if currency else 2


def list_currencies(active_only: bool = True) -> List[Currency]:
    query = Currency.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Currency.code).all()
