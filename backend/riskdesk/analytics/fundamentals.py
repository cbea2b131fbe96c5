from __future__ import annotations

import datetime
import math
from typing import Any

from riskdesk.providers.values import as_number
from riskdesk.schemas.holdings import RiskFactors


def _parse_date(value: Any) -> datetime.datetime | None:
    if isinstance(value, datetime.datetime):
        return value if value.tzinfo else value.replace(tzinfo=datetime.UTC)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.datetime.fromtimestamp(value, tz=datetime.UTC)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=datetime.UTC)
    return None


def days_until(moment: datetime.datetime | None, now: datetime.datetime) -> int | None:
    if moment is None:
        return None
    return math.ceil((moment - now).total_seconds() / 86400)


def _as_percent(value: float | None) -> float | None:
    # Yahoo reports shortPercentOfFloat as a fraction.
    if value is None:
        return None
    return value * 100 if abs(value) <= 1 else value


def factors_from_info(info: dict | None, now: datetime.datetime | None = None) -> RiskFactors:
    """Fundamental risk inputs from a Yahoo ``Ticker.info`` dict; absent fields stay ``None``.

    ``earningsDate``, ``ebit`` and ``interestExpense`` are the extra keys the
    Yahoo adapter adds from the calendar and income statement.
    """
    if not info:
        return RiskFactors()
    now = now or datetime.datetime.now(datetime.UTC)

    market_cap = as_number(info.get("marketCap"))
    current_price = as_number(info.get("currentPrice")) or as_number(info.get("regularMarketPrice"))
    free_cash_flow = as_number(info.get("freeCashflow"))
    avg_volume_10d = as_number(info.get("averageDailyVolume10Day")) or as_number(info.get("averageVolume10days"))

    ebit = as_number(info.get("ebit"))
    interest_expense = abs(as_number(info.get("interestExpense")) or 0.0) or None
    interest_coverage = ebit / interest_expense if ebit and interest_expense else None

    days_to_earnings = days_until(_parse_date(info.get("earningsDate")), now)
    if days_to_earnings is not None and days_to_earnings < 0:
        days_to_earnings = None

    return RiskFactors(
        beta=as_number(info.get("beta")),
        trailing_pe=as_number(info.get("trailingPE")),
        price_to_sales=as_number(info.get("priceToSalesTrailing12Months")),
        peg=as_number(info.get("pegRatio")) or as_number(info.get("trailingPegRatio")),
        fcf_yield_pct=(free_cash_flow / market_cap * 100) if free_cash_flow and market_cap else None,
        debt_to_equity=as_number(info.get("debtToEquity")),
        interest_coverage=interest_coverage,
        avg_dollar_volume=(avg_volume_10d * current_price) if avg_volume_10d and current_price else None,
        short_percent_float=_as_percent(as_number(info.get("shortPercentOfFloat"))),
        short_ratio=as_number(info.get("shortRatio")),
        days_to_earnings=days_to_earnings,
    )
