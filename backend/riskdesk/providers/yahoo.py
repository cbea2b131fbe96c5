from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Callable, TypeVar

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from riskdesk.config.settings import settings
from riskdesk.providers.http import ProviderError
from riskdesk.providers.values import as_number, collapse_month_end
from riskdesk.schemas.provider import OHLCPoint, Quote, default_quote


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _ticker(symbol: str) -> yf.Ticker:
    return yf.Ticker(symbol)


async def _call(what: str, fn: Callable[..., T], *args: Any) -> T:
    """Run a blocking yfinance call off the event loop; failures become ``ProviderError``."""
    try:
        return await asyncio.to_thread(fn, *args)
    except ProviderError:
        raise
    except YFRateLimitError as exc:
        raise ProviderError("yahoo", f"rate_limited during {what}", status=429) from exc
    except Exception as exc:
        raise ProviderError("yahoo", f"{what} failed: {exc}") from exc


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _quote_from_info(info: dict) -> Quote | None:
    price = as_number(info.get("regularMarketPrice")) or as_number(info.get("currentPrice"))
    if price is None or price <= 0:
        return None
    return Quote(
        price=price,
        change=as_number(info.get("regularMarketChange")) or 0.0,
        change_percent=as_number(info.get("regularMarketChangePercent")) or 0.0,
        market_cap=as_number(info.get("marketCap")),
        pe=as_number(info.get("trailingPE")),
        dividend=as_number(info.get("trailingAnnualDividendRate")),
        beta=as_number(info.get("beta")) or as_number(info.get("beta3Year")),
        currency=_text(info.get("currency")),
        quote_type=_text(info.get("quoteType")),
        long_name=_text(info.get("longName")),
        short_name=_text(info.get("shortName")),
        source="yahoo",
    )


def _info(symbol: str) -> dict:
    info = _ticker(symbol).get_info()
    return dict(info) if isinstance(info, dict) else {}


def _quotes_blocking(symbols: list[str]) -> dict[str, Quote]:
    out = {symbol: default_quote() for symbol in symbols}
    failures = 0
    last_error: Exception | None = None
    for symbol in symbols:
        try:
            info = _info(symbol)
        except YFRateLimitError:
            raise
        except Exception as exc:
            logger.warning("Yahoo quote failed for %s: %s", symbol, exc)
            failures += 1
            last_error = exc
            continue
        parsed = _quote_from_info(info)
        if parsed is not None:
            out[symbol] = parsed
    if symbols and failures == len(symbols) and last_error is not None:
        raise last_error
    return out


async def fetch_quotes(symbols: list[str]) -> dict[str, Quote]:
    """One batched quote lookup.

    Every requested symbol is present in the result; symbols Yahoo has no
    price for carry the default quote so they are never silently dropped.
    """
    unique = list(dict.fromkeys(s.strip() for s in symbols if s and s.strip()))
    if not unique:
        return {}
    return await _call("quotes", _quotes_blocking, unique)


def _closes(symbol: str, interval: str) -> pd.Series | None:
    frame = _ticker(symbol).history(period="1y", interval=interval, auto_adjust=True)
    if frame is None or frame.empty or "Close" not in frame.columns:
        return None
    closes = pd.to_numeric(frame["Close"], errors="coerce").dropna()
    return closes if not closes.empty else None


async def fetch_monthly_closes(symbol: str, months: int = 12) -> list[OHLCPoint] | None:
    closes = await _call("monthly history", _closes, symbol, "1mo")
    if closes is None:
        return None
    points = collapse_month_end(((stamp.strftime("%Y-%m"), close) for stamp, close in closes.items()), months)
    return points or None


async def fetch_daily_closes(symbol: str) -> list[float] | None:
    closes = await _call("daily history", _closes, symbol, "1d")
    if closes is None or len(closes) < settings.min_history_points:
        return None
    return [float(close) for close in closes]


def _statement_value(frame: Any, *rows: str) -> float | None:
    if not isinstance(frame, pd.DataFrame) or frame.empty:
        return None
    for row in rows:
        if row in frame.index:
            series = pd.to_numeric(frame.loc[row], errors="coerce").dropna()
            if not series.empty:
                return float(series.iloc[0])
    return None


def _earnings_date(calendar: Any) -> datetime.date | None:
    if not isinstance(calendar, dict):
        return None
    dates = calendar.get("Earnings Date")
    if isinstance(dates, (list, tuple)):
        dates = dates[0] if dates else None
    if isinstance(dates, datetime.datetime):
        return dates.date()
    return dates if isinstance(dates, datetime.date) else None


def _fundamentals_blocking(symbol: str) -> dict | None:
    ticker = _ticker(symbol)
    info = ticker.get_info()
    if not isinstance(info, dict) or not info:
        return None
    out = dict(info)
    try:
        out["earningsDate"] = _earnings_date(ticker.calendar)
        income = ticker.income_stmt
        out["ebit"] = _statement_value(income, "EBIT", "Operating Income")
        out["interestExpense"] = _statement_value(income, "Interest Expense", "Interest Expense Non Operating")
    except YFRateLimitError:
        raise
    except Exception as exc:
        # info alone still yields most factors
        logger.warning("Yahoo statements unavailable for %s: %s", symbol, exc)
    return out


async def fetch_info(symbol: str) -> dict | None:
    info = await _call("info", _info, symbol)
    return info or None


async def fetch_fundamentals(symbol: str) -> dict | None:
    """``Ticker.info`` plus the next earnings date and last fiscal EBIT / interest expense."""
    return await _call("fundamentals", _fundamentals_blocking, symbol)


def _sector_weightings(symbol: str) -> dict[str, float] | None:
    weightings = _ticker(symbol).funds_data.sector_weightings
    if not isinstance(weightings, dict):
        return None
    out = {}
    for key, value in weightings.items():
        number = as_number(value)
        if number is not None:
            out[str(key)] = number
    return out or None


async def fetch_sector_weightings(symbol: str) -> dict[str, float] | None:
    return await _call("sector weightings", _sector_weightings, symbol)
