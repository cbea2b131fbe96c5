from __future__ import annotations

import asyncio
import datetime
import logging
import random
import time
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from riskdesk.cache import TTLCache
from riskdesk.config.settings import Settings, settings as default_settings
from riskdesk.providers import finnhub, stooq, yahoo
from riskdesk.providers.http import ProviderError
from riskdesk.providers.metrics import ProviderMetrics
from riskdesk.schemas.provider import OHLCPoint, Quote, default_quote


logger = logging.getLogger(__name__)

T = TypeVar("T")
Tier = tuple[str, Callable[..., Awaitable[Any]]]


def _unique_symbols(symbols: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(s.strip() for s in symbols if s and s.strip()))


def synthetic_monthly_series(symbol: str, months: int, today: datetime.date | None = None) -> list[OHLCPoint]:
    """Near-flat series around 100 ending in the current month.

    The jitter is seeded by the symbol so repeated computations agree.
    """
    today = today or datetime.datetime.now(datetime.UTC).date()
    rng = random.Random(f"synthetic:{symbol.upper()}:{months}")
    points: list[OHLCPoint] = []
    for offset in range(months - 1, -1, -1):
        year, month = divmod(today.year * 12 + today.month - 1 - offset, 12)
        points.append(OHLCPoint(date=f"{year:04d}-{month + 1:02d}", close=100 + rng.random() * 5))
    return points


class MarketData:
    """Quote, history, fundamentals and FX lookups over the provider waterfall.

    Nothing raised by a provider escapes this class: failures are counted in
    ``metrics`` and turned into ``None``, the default quote, or a synthetic
    history series.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        metrics: ProviderMetrics | None = None,
        fx_cache: TTLCache[float] | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.metrics = metrics or ProviderMetrics()
        self.fx_cache = fx_cache if fx_cache is not None else TTLCache(self.settings.fx_ttl_seconds)

    async def _attempt(self, provider: str, call: Callable[..., Awaitable[T]], *args: Any) -> T | None:
        started = time.perf_counter()
        ok = False
        try:
            result = await call(*args)
            ok = True
            return result
        except ProviderError as exc:
            logger.warning("Provider %s failed for %s: %s", provider, args[:1], exc)
            return None
        except Exception:
            logger.exception("Unexpected error from provider %s for %s", provider, args[:1])
            return None
        finally:
            self.metrics.record(provider, ok=ok, latency_ms=(time.perf_counter() - started) * 1000)

    async def _first_available(self, tiers: Sequence[Tier], *args: Any) -> Any:
        for provider, call in tiers:
            result = await self._attempt(provider, call, *args)
            if result:
                return result
        return None

    def _tiers(self, finnhub_call, yahoo_call, stooq_call) -> list[Tier]:
        tiers: list[Tier] = []
        if finnhub_call is not None and finnhub.is_enabled():
            tiers.append(("finnhub", finnhub_call))
        tiers.append(("yahoo", yahoo_call))
        tiers.append(("stooq", stooq_call))
        return tiers

    async def fetch_quotes_batch(self, symbols: Sequence[str]) -> dict[str, Quote]:
        unique = _unique_symbols(symbols)
        result: dict[str, Quote] = {}

        if finnhub.is_enabled():
            quotes = await asyncio.gather(
                *(self._attempt("finnhub", finnhub.fetch_quote, symbol) for symbol in unique)
            )
            for symbol, quote in zip(unique, quotes):
                if quote is not None:
                    result[symbol] = quote

        remaining = [symbol for symbol in unique if symbol not in result]
        if remaining:
            batch = await self._attempt("yahoo", yahoo.fetch_quotes, remaining) or {}
            for symbol in remaining:
                quote = batch.get(symbol)
                if quote is not None:
                    result[symbol] = quote

        missing = [symbol for symbol in unique if symbol not in result or result[symbol].is_default]
        if missing:
            quotes = await asyncio.gather(
                *(self._attempt("stooq", stooq.fetch_quote, symbol) for symbol in missing)
            )
            for symbol, quote in zip(missing, quotes):
                if quote is not None:
                    result[symbol] = quote

        for symbol in unique:
            if symbol not in result:
                result[symbol] = default_quote()
            if result[symbol].is_default:
                logger.warning("No provider resolved a quote for %s; using default price", symbol)
        return result

    async def fetch_history_monthly_close(
        self, symbol: str, months: int | None = None, allow_synthetic: bool = True
    ) -> list[OHLCPoint]:
        """Month-end closes from the first provider that has any.

        With ``allow_synthetic=False`` an empty list replaces the synthetic series.
        """
        months = months or self.settings.history_months
        tiers = self._tiers(
            finnhub.fetch_monthly_closes, yahoo.fetch_monthly_closes, stooq.fetch_monthly_closes
        )
        points = await self._first_available(tiers, symbol, months)
        if points:
            return points
        if not allow_synthetic:
            logger.warning("Monthly history unavailable for %s", symbol)
            return []
        logger.warning("Monthly history unavailable for %s; using synthetic series", symbol)
        return synthetic_monthly_series(symbol, months)

    async def fetch_history_daily_close(self, symbol: str) -> list[float] | None:
        tiers = self._tiers(None, yahoo.fetch_daily_closes, stooq.fetch_daily_closes)
        return await self._first_available(tiers, symbol)

    async def fetch_fundamentals(self, symbol: str) -> dict | None:
        return await self._attempt("yahoo", yahoo.fetch_fundamentals, symbol)

    async def fetch_sector_weightings(self, symbol: str) -> dict[str, float] | None:
        return await self._attempt("yahoo", yahoo.fetch_sector_weightings, symbol)

    async def fetch_fx_rate(self, from_currency: str | None, to_currency: str | None) -> float:
        source = (from_currency or "").strip().upper()
        target = (to_currency or "").strip().upper()
        if not source or not target or source == target:
            return 1.0

        key = f"{source}{target}"
        cached = self.fx_cache.get(key)
        if cached is not None:
            return cached

        pair = f"{key}=X"
        quote = (await self.fetch_quotes_batch([pair]))[pair]
        if quote.is_default:
            logger.warning("FX rate %s->%s unavailable; defaulting to 1", source, target)
            return 1.0
        self.fx_cache.set(key, quote.price)
        return quote.price
