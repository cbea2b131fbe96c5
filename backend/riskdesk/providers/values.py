from __future__ import annotations

import datetime
import math
from typing import Any, Iterable, Optional

from riskdesk.schemas.provider import OHLCPoint


def as_number(value: Any) -> Optional[float]:
    """Coerce provider values (numbers, numeric strings, ``{"raw": x}``) to a finite float."""
    if isinstance(value, dict):
        value = value.get("raw")
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def month_key(timestamp: float) -> str:
    moment = datetime.datetime.fromtimestamp(int(timestamp), tz=datetime.UTC)
    return f"{moment.year:04d}-{moment.month:02d}"


def collapse_month_end(points: Iterable[tuple[str, Any]], months: int) -> list[OHLCPoint]:
    """Keep the last close seen for every ``YYYY-MM`` key, ascending, trimmed to ``months``."""
    by_month: dict[str, float] = {}
    for key, close in points:
        number = as_number(close)
        if number is None:
            continue
        by_month[key] = number
    ordered = sorted(by_month.items())
    return [OHLCPoint(date=key, close=close) for key, close in ordered[-months:]]


# Quote currencies that are hundredths of the ISO currency.
MINOR_UNITS = {
    "GBp": ("GBP", 100.0),
    "GBX": ("GBP", 100.0),
    "ZAc": ("ZAR", 100.0),
    "ZAC": ("ZAR", 100.0),
    "ILA": ("ILS", 100.0),
}


def major_currency(code: str | None, default: str = "USD") -> tuple[str, float]:
    """``(ISO code, divisor)`` for a quote currency; prices divide by ``divisor``."""
    code = (code or "").strip()
    if not code:
        return default.strip().upper(), 1.0
    if code in MINOR_UNITS:
        return MINOR_UNITS[code]
    return code.upper(), 1.0
