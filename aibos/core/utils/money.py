"""Decimal helpers for monetary amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")
RATE_PLACES = Decimal("0.00000001")
# Largest values Numeric(18, 2) and Numeric(18, 4) columns hold.
MAX_AMOUNT = Decimal("9999999999999999.99")
MAX_UNIT_AMOUNT = Decimal("99999999999999.9999")


def to_decimal(value: Any) -> Decimal:
    """Coerce DB/JSON values (None, float, str, Decimal) to a finite Decimal."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError("invalid_amount")
    if not result.is_finite():
        raise ValueError("invalid_amount")
    return result


def quantize(value: Any, places: int = 2) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    try:
        return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("invalid_amount")


def quantize_rate(value: Any) -> Decimal:
    try:
        return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("invalid_amount")


def parse_amount(value: Any, places: int = 2, limit: Decimal = MAX_AMOUNT) -> Decimal:
    """Quantize a client-supplied amount; raises ``amount_out_of_range`` past ``limit``."""
    amount = to_decimal(value)
    if amount.copy_abs() > limit:
        raise ValueError("amount_out_of_range")
    amount = quantize(amount, places)
    if amount.copy_abs() > limit:
        raise ValueError("amount_out_of_range")
    return amount


def money_str(value: Any, places: int = 2) -> str:
    return str(quantize(value, places))
