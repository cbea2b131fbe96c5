from __future__ import annotations

from typing import Mapping

from riskdesk.sectors.rules import OTHER, normalize_sector_name


# Broad US large-cap mix used when the benchmark's fund data is unavailable.
FALLBACK_TARGETS: dict[str, float] = {
    "Technology": 25.0,
    "Healthcare": 13.0,
    "Financial Services": 12.0,
    "Industrials": 10.0,
    "Consumer Discretionary": 10.0,
    "Communication Services": 9.0,
    "Consumer Defensive": 7.0,
    "Energy": 5.0,
    "Materials": 3.0,
    "Utilities": 3.0,
    "Real Estate": 3.0,
}

_WEIGHTING_KEYS = {
    "realestate": "Real Estate",
    "reit": "Real Estate",
    "reits": "Real Estate",
    "utility": "Utilities",
}


def benchmark_proxy(benchmark: str, proxies: Mapping[str, str]) -> str:
    """Fund that stands in for an index when reading sector weights (``^GSPC`` -> ``SPY``)."""
    symbol = (benchmark or "").strip().upper()
    return proxies.get(symbol, symbol)


def standardize_weighting_key(key: str) -> str:
    cleaned = (key or "").strip().lower().replace("_", " ")
    return _WEIGHTING_KEYS.get(cleaned.replace(" ", "")) or normalize_sector_name(cleaned.title()) or OTHER


def targets_from_weightings(weightings: Mapping[str, float] | None) -> dict[str, float] | None:
    """Sector targets in percent summing to 100, or ``None`` when nothing usable came back.

    Fractions (<= 1) are read as shares of the fund and scaled to percent.
    """
    if not weightings:
        return None
    totals: dict[str, float] = {}
    for key, value in weightings.items():
        if value is None or value <= 0:
            continue
        percent = value * 100 if value <= 1 else value
        sector = standardize_weighting_key(key)
        totals[sector] = totals.get(sector, 0.0) + percent
    grand_total = sum(totals.values())
    if grand_total <= 0:
        return None
    return {sector: round(value / grand_total * 100, 1) for sector, value in totals.items()}
