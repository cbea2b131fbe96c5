from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from riskdesk.cache import TTLCache
from riskdesk.config.settings import Settings, settings as default_settings
from riskdesk.providers import yahoo
from riskdesk.providers.http import ProviderError
from riskdesk.schemas.provider import Quote
from riskdesk.sectors.rules import OTHER, SectorMeta, determine_sector, lookup_builtin, normalize_ticker


logger = logging.getLogger(__name__)


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_text(*values: Any) -> str | None:
    for value in values:
        text = _text(value)
        if text:
            return text
    return None


def meta_from_info(info: dict | None) -> SectorMeta:
    info = info or {}
    return SectorMeta(
        raw_sector=_first_text(info.get("sector"), info.get("sectorDisp")),
        raw_industry=_first_text(info.get("industry"), info.get("industryDisp")),
        category_name=_first_text(info.get("category")),
        quote_type=_first_text(info.get("quoteType")),
        long_name=_first_text(info.get("longName"), info.get("shortName")),
        short_name=_first_text(info.get("shortName"), info.get("longName")),
        summary=_first_text(info.get("longBusinessSummary")),
    )


def meta_from_quote(quote: Quote) -> SectorMeta:
    return SectorMeta(quote_type=quote.quote_type, long_name=quote.long_name, short_name=quote.short_name)


class SectorClassifier:
    """Cache-first sector labels with single-flight background resolution."""

    def __init__(self, settings: Settings | None = None, cache: TTLCache[str] | None = None) -> None:
        self.settings = settings or default_settings
        self.cache: TTLCache[str] = cache if cache is not None else TTLCache(self.settings.sector_ttl_seconds)
        self._inflight: dict[str, asyncio.Task[str]] = {}

    def sector_for_ticker(self, ticker: str) -> str:
        """Synchronous lookup; a miss answers "Other" and starts a lookup when a loop is running."""
        normalized = normalize_ticker(ticker)
        if not normalized:
            return OTHER
        builtin = lookup_builtin(normalized)
        if builtin:
            return builtin
        cached = self.cache.get(normalized)
        if cached is not None:
            return cached
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return OTHER
        self._start(normalized)
        return OTHER

    def seed_sector_from_quote(self, ticker: str, metadata: SectorMeta) -> None:
        """Prime the cache from metadata that arrived with a quote."""
        normalized = normalize_ticker(ticker)
        if not normalized:
            return
        existing = self.cache.get(normalized)
        if existing and existing != OTHER:
            return
        sector = determine_sector(normalized, metadata)
        if sector != OTHER:
            self.cache.set(normalized, sector)

    async def ensure_sectors(self, tickers: Iterable[str]) -> None:
        unique = list(dict.fromkeys(t for t in (normalize_ticker(x) for x in tickers) if t))
        await asyncio.gather(*(self.ensure_sector(ticker) for ticker in unique))

    async def ensure_sector(self, ticker: str) -> str:
        normalized = normalize_ticker(ticker)
        if not normalized:
            return OTHER

        builtin = lookup_builtin(normalized)
        if builtin:
            return builtin
        cached = self.cache.get(normalized)
        if cached is not None:
            return cached
        return await asyncio.shield(self._start(normalized))

    def _start(self, ticker: str) -> asyncio.Task[str]:
        task = self._inflight.get(ticker)
        if task is None:
            task = asyncio.ensure_future(self._resolve(ticker))
            self._inflight[ticker] = task
            task.add_done_callback(lambda done, key=ticker: self._settle(key, done))
        return task

    def _settle(self, ticker: str, task: asyncio.Task[str]) -> None:
        if self._inflight.get(ticker) is task:
            del self._inflight[ticker]

    async def _resolve(self, ticker: str) -> str:
        try:
            meta = await self.fetch_sector_meta(ticker)
        except Exception:
            logger.exception("Sector metadata lookup failed for %s", ticker)
            meta = SectorMeta()
        sector = determine_sector(ticker, meta)
        ttl = self.settings.sector_failure_ttl_seconds if sector == OTHER else None
        self.cache.set(ticker, sector, ttl)
        return sector

    async def fetch_sector_meta(self, ticker: str) -> SectorMeta:
        try:
            return meta_from_info(await yahoo.fetch_info(ticker))
        except ProviderError as exc:
            logger.warning("Sector metadata unavailable for %s: %s", ticker, exc)
            return SectorMeta()
