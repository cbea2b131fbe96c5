from __future__ import annotations

import time

from riskdesk.config.settings import settings
from riskdesk.providers.http import ProviderError, build_url, get_json
from riskdesk.providers.values import as_number, collapse_month_end, month_key
from riskdesk.schemas.provider import OHLCPoint, Quote


_QUOTE_PATH = "/api/v1/quote"
_CANDLE_PATH = "/api/v1/stock/candle"
_CANDLE_LOOKBACK_SECONDS = 400 * 24 * 60 * 60


def is_enabled() -> bool:
    return bool(settings.providers.finnhub_api_key)


def map_symbol(symbol: str) -> str:
    normalized = symbol.strip().upper()
    mapped = settings.providers.finnhub_symbol_map.get(normalized)
    if mapped:
        return mapped
    if normalized.endswith("=X") and len(normalized) == 8:
        return f"OANDA:{normalized[:3]}_{normalized[3:6]}"
    return normalized


def _url(path: str, params: dict[str, str]) -> str:
    params = {**params, "token": settings.providers.finnhub_api_key or ""}
    return build_url(settings.providers.finnhub_base_url, path, params)


async def fetch_quote(symbol: str) -> Quote | None:
    if not is_enabled():
        return None
    payload = await get_json("finnhub", _url(_QUOTE_PATH, {"symbol": map_symbol(symbol)}))
    if not isinstance(payload, dict):
        raise ProviderError("finnhub", "unexpected quote payload")

    price = as_number(payload.get("c"))
    previous = as_number(payload.get("pc"))
    if price is None or price <= 0 or not previous:
        return None
    change = price - previous
    return Quote(
        price=price,
        change=change,
        change_percent=change / previous * 100,
        source="finnhub",
    )


async def fetch_monthly_closes(symbol: str, months: int = 12) -> list[OHLCPoint] | None:
    """Daily candles for ~400 days collapsed to month-end closes.

    Returns ``None`` when the provider has fewer than ``min_history_points``
    raw candles; the caller treats that as insufficient, not as an error.
    """
    if not is_enabled():
        return None
    now = int(time.time())
    params = {
        "symbol": map_symbol(symbol),
        "resolution": "D",
        "from": str(now - _CANDLE_LOOKBACK_SECONDS),
        "to": str(now),
    }
    payload = await get_json("finnhub", _url(_CANDLE_PATH, params))
    if not isinstance(payload, dict) or payload.get("s") != "ok":
        return None
    times = payload.get("t")
    closes = payload.get("c")
    if not isinstance(times, list) or not isinstance(closes, list):
        return None
    if min(len(times), len(closes)) < settings.min_history_points:
        return None

    points = collapse_month_end(
        ((month_key(ts), close) for ts, close in zip(times, closes) if as_number(ts) is not None),
        months,
    )
    return points or None
