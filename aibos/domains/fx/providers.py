"""HTTP clients for third-party exchange-rate providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

import requests

logger = logging.getLogger(__name__)


class RateProviderError(Exception):
    """Raised when a provider cannot supply the requested rates."""

    pass


@dataclass
class ProviderQuote:
    """Rates for ``base`` as returned by one provider call."""

    provider: str
    base: str
    rates: Dict[str, Decimal]
    as_of: datetime


def _parse_rates(provider: str, raw: dict, targets: Iterable[str]) -> Dict[str, Decimal]:
    if not isinstance(raw, dict):
        raise RateProviderError(f"{provider}: malformed payload (no rates)")
    parsed: Dict[str, Decimal] = {}
    missing: List[str] = []
    for code in targets:
        value = raw.get(code)
        if value is None:
            missing.append(code)
            continue
        try:
            rate = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise RateProviderError(f"{provider}: invalid rate for {code}: {value!r}")
        if rate <= 0:
            raise RateProviderError(f"{provider}: non-positive rate for {code}")
        parsed[code] = rate
    if missing:
        raise RateProviderError(f"{provider}: missing rates for {', '.join(sorted(missing))}")
    return parsed


def _as_of(timestamp, date_str: Optional[str]) -> datetime:
    if timestamp:
        try:
            return datetime.utcfromtimestamp(int(timestamp))
        except (TypeError, ValueError, OverflowError):
            pass
    if date_str:
        try:
            return datetime.fromisoformat(date_str)
        except ValueError:
            pass
    return datetime.utcnow()


class ExchangeRateApiProvider:
    """exchangerate-api.com ``/latest/{base}`` endpoint (no key required)."""

    name = "exchangerate-api"

    def __init__(self, base_url: str, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch(self, base: str, targets: List[str]) -> ProviderQuote:
        try:
            resp = requests.get(f"{self.base_url}/latest/{base}", timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RateProviderError(f"{self.name}: request failed: {e}") from e

        if not isinstance(data, dict):
            raise RateProviderError(f"{self.name}: malformed payload")
        if data.get("base") and data["base"].upper() != base:
            raise RateProviderError(f"{self.name}: base mismatch ({data['base']} != {base})")
        rates = _parse_rates(self.name, data.get("rates"), targets)
        return ProviderQuote(
            provider=self.name,
            base=base,
            rates=rates,
            as_of=_as_of(data.get("time_last_updated"), data.get("date")),
        )


class FixerProvider:
    """fixer.io ``/latest`` endpoint; requires an access key."""

    name = "fixer"

    def __init__(self, base_url: str, api_key: str, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def fetch(self, base: str, targets: List[str]) -> ProviderQuote:
        params = {"access_key": self.api_key, "base": base, "symbols": ",".join(targets)}
        try:
            resp = requests.get(f"{self.base_url}/latest", params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RateProviderError(f"{self.name}: request failed: {e}") from e

        if not isinstance(data, dict) or not data.get("success", False):
            error = data.get("error") if isinstance(data, dict) else None
            raise RateProviderError(f"{self.name}: provider returned an error: {error}")
        rates = _parse_rates(self.name, data.get("rates"), targets)
        return ProviderQuote(
            provider=self.name,
            base=base,
            rates=rates,
            as_of=_as_of(data.get("timestamp"), data.get("date")),
        )


def build_providers(config) -> List[object]:
    """Primary first, then fallback (only when configured with a key)."""
    timeout = float(config.get("FX_HTTP_TIMEOUT_SECONDS", 30))
    providers: List[object] = []
    if config.get("FX_PRIMARY_URL"):
        providers.append(ExchangeRateApiProvider(config["FX_PRIMARY_URL"], timeout=timeout))
    if config.get("FX_FALLBACK_URL") and config.get("FX_FALLBACK_API_KEY"):
        providers.append(
            FixerProvider(config["FX_FALLBACK_URL"], config["FX_FALLBACK_API_KEY"], timeout=timeout)
        )
    else:
        logger.info("FX fallback provider disabled (no FX_FALLBACK_API_KEY)")
    return providers
