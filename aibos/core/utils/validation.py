"""Input validation helpers."""

from __future__ import annotations

from datetime import date
from typing import Optional

from aibos.core.utils.errors import DomainError


def require_fields(data: dict, *fields: str) -> None:
    for field in fields:
        if field not in data or data[field] in (None, ""):
            raise DomainError("validation_error", f"Missing required field: {field}", {"field": field})


def parse_date_arg(value: Optional[str], field: str, default: Optional[date] = None) -> Optional[date]:
    """Parse an ISO date query argument."""
    if value in (None, ""):
        return default
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise DomainError("validation_error", f"Invalid date for '{field}'", {"field": field, "value": value})


def parse_bool_arg(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")
