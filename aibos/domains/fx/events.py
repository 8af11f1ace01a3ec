"""FX domain event catalog."""

from __future__ import annotations

FX_RATES_INGESTED = "fx.rates.ingested"
FX_RATE_RECORDED = "fx.rate.recorded"

EVENT_CATALOG = {
    FX_RATES_INGESTED: {
        "version": "v1",
        "payload": {
            "base": "str",
            "provider": "str",
            "source": "str",  # 'primary' or 'fallback'
            "as_of": "datetime",
            "currencies": "list[str]",
        },
    },
    FX_RATE_RECORDED: {
        "version": "v1",
        "payload": {"rate_id": "int", "from": "str", "to": "str", "rate": "decimal"},
    },
}
