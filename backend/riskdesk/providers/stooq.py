from __future__ import annotations

import re
from typing import Literal

from riskdesk.config.settings import settings
from riskdesk.providers.http import ProviderError, build_url, get_text
from riskdesk.providers.values import as_number
from riskdesk.schemas.provider import OHLCPoint, Quote


_CSV_PATH = "/q/d/l/"
_NO_DATA_RE = re.compile(r"Not Found|No data|Brak danych", re.IGNORECASE)

Interval = Literal["d", "m"]


def candidate_symbols(symbol: str) -> list[str]:
    normalized = symbol.strip().upper()
    mapped = settings.providers.stooq_symbol_map.get(normalized, normalized)
    lowered = mapped.lower()
    if lowered.startswith("^"):
        return [lowered]
    if lowered.endswith("=x"):
        return [lowered[:-2]]
    if "." in lowered:
        return [lowered]
    return [f"{lowered}.us", lowered]


def parse_csv(text: str, limit: int = 500) -> list[tuple[str, float]]:
    """Parse ``Date,Open,High,Low,Close,Volume`` rows into ``(date, close)`` pairs."""
    rows: list[tuple[str, float]] = []
    for line in text.strip().splitlines()[1:]:
        cols = line.split(",")
        if len(cols) < 5:
            continue
        close = as_number(cols[4])
        if close is None:
            continue
        rows.append((cols[0].strip(), close))
    return rows[-limit:]


async def fetch_csv(symbol: str, interval: Interval) -> str | None:
    last_error: ProviderError | None = None
    for candidate in candidate_symbols(symbol):
        url = build_url(settings.providers.stooq_base_url, _CSV_PATH, {"s": candidate, "i": interval})
        try:
            text = await get_text("stooq", url)
        except ProviderError as exc:
            last_error = exc
            continue
        if text.strip() and not _NO_DATA_RE.search(text):
            return text
    if last_error is not None:
        raise last_error
    return None


async def fetch_quote(symbol: str) -> Quote | None:
    text = await fetch_csv(symbol, "d")
    if text is None:
        return None
    rows = parse_csv(text, limit=10)
    if len(rows) < 2:
        return None
    previous, price = rows[-2][1], rows[-1][1]
    if price <= 0:
        return None
    change = price - previous
    return Quote(
        price=price,
        change=change,
        change_percent=(change / previous * 100) if previous else 0.0,
        source="stooq",
    )


async def fetch_monthly_closes(symbol: str, months: int = 12) -> list[OHLCPoint] | None:
    text = await fetch_csv(symbol, "m")
    if text is None:
        return None
    points = [OHLCPoint(date=day[:7], close=close) for day, close in parse_csv(text, limit=60)]
    return points[-months:] or None


async def fetch_daily_closes(symbol: str) -> list[float] | None:
    text = await fetch_csv(symbol, "d")
    if text is None:
        return None
    closes = [close for _, close in parse_csv(text, limit=260)]
    if len(closes) < settings.min_history_points:
        return None
    return closes
