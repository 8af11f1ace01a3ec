from aibos.domains.fx.services.currency_service import (
    decimal_places,
    list_currencies,
    require_currency,
    seed_currencies,
)
from aibos.domains.fx.services.rate_service import (
    RateQuote,
    convert,
    get_rate,
    ingest_rates,
    record_manual_rate,
)

__all__ = [
    "RateQuote",
    "convert",
    "decimal_places",
    "get_rate",
    "ingest_rates",
    "list_currencies",
    "record_manual_rate",
    "require_currency",
    "seed_currencies",
]
