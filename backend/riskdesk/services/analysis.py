from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Sequence

import pandas as pd

from riskdesk.analytics.fundamentals import factors_from_info
from riskdesk.analytics.portfolio import (
    beta_risk,
    concentration,
    diversification,
    performance_metrics,
    weighted_growth_index,
)
from riskdesk.config.settings import Settings, settings as default_settings
from riskdesk.providers.selector import MarketData
from riskdesk.schemas.analysis import (
    PerformanceMeta,
    PerformancePoint,
    PortfolioAnalysis,
    PortfolioMetrics,
    PortfolioRisk,
    SectorAllocation,
)
from riskdesk.schemas.holdings import Holding, Portfolio
from riskdesk.schemas.provider import OHLCPoint, Quote
from riskdesk.sectors.benchmarks import FALLBACK_TARGETS, benchmark_proxy, targets_from_weightings
from riskdesk.sectors.classifier import SectorClassifier, meta_from_quote
from riskdesk.services.holdings import CachedSnapshotService
from riskdesk.services.snapshot import Position, value_positions


logger = logging.getLogger(__name__)


def _risk_free_rate(quote: Quote | None, settings: Settings) -> float:
    # ^IRX quotes the 13-week T-bill yield in percent.
    if quote is None or quote.is_default:
        logger.warning(
            "Risk-free rate %s unavailable; using %s", settings.risk_free_symbol, settings.risk_free_fallback
        )
        return settings.risk_free_fallback
    return quote.price / 100


async def benchmark_sector_targets(market: MarketData, benchmark: str, settings: Settings) -> dict[str, float]:
    proxy = benchmark_proxy(benchmark, settings.sector_benchmark_proxies)
    targets = targets_from_weightings(await market.fetch_sector_weightings(proxy))
    if targets is None:
        logger.info("No sector weightings for %s; using fallback targets", proxy)
        return dict(FALLBACK_TARGETS)
    return targets


def sector_allocation(
    positions: Sequence[Position], sector_names: Sequence[str], targets: dict[str, float]
) -> list[SectorAllocation]:
    """Portfolio weight per sector next to the benchmark target, largest allocation first.

    Benchmark sectors the portfolio does not hold are listed with a zero allocation.
    """
    allocated: dict[str, float] = {}
    for position, sector in zip(positions, sector_names):
        allocated[sector] = allocated.get(sector, 0.0) + position.weight_pct
    for sector in targets:
        allocated.setdefault(sector, 0.0)
    rows = [
        SectorAllocation(sector=sector, allocation=round(allocation, 1), target=round(targets.get(sector, 0.0), 1))
        for sector, allocation in allocated.items()
    ]
    rows.sort(key=lambda row: row.allocation, reverse=True)
    return rows


def _closes(points: Sequence[OHLCPoint]) -> pd.Series:
    return pd.Series({point.date: point.close for point in points}, dtype=float)


async def _portfolio_beta_spx(market: MarketData, positions: Sequence[Position]) -> float | None:
    """Weight-averaged provider beta (vs the S&P 500) over holdings that report one."""

    async def beta_of(position: Position) -> float | None:
        if position.quote.beta is not None:
            return position.quote.beta
        return factors_from_info(await market.fetch_fundamentals(position.holding.symbol)).beta

    betas = await asyncio.gather(*(beta_of(position) for position in positions))
    known = [(beta, position.weight_pct) for beta, position in zip(betas, positions) if beta is not None]
    total_weight = sum(weight for _, weight in known)
    if total_weight <= 0:
        return None
    return round(sum(beta * weight for beta, weight in known) / total_weight, 2)


async def compute_portfolio_analysis(
    holdings: Sequence[Holding],
    benchmark: str,
    *,
    market: MarketData,
    sectors: SectorClassifier,
    settings: Settings | None = None,
    base_currency: str = "USD",
    now: datetime.datetime | None = None,
) -> PortfolioAnalysis:
    """Performance against ``benchmark``, portfolio risk ratios, concentration and sector mix."""
    settings = settings or default_settings
    base_currency = (base_currency or "USD").strip().upper()
    analysis = PortfolioAnalysis(
        performance_meta=PerformanceMeta(benchmark=benchmark),
        base_currency=base_currency,
        refreshed_at=(now or datetime.datetime.now(datetime.UTC)).isoformat(),
    )
    if not holdings:
        return analysis

    symbols = list(dict.fromkeys(holding.symbol for holding in holdings))
    quotes = await market.fetch_quotes_batch([*symbols, settings.risk_free_symbol])
    risk_free = _risk_free_rate(quotes.get(settings.risk_free_symbol), settings)
    positions = await value_positions(holdings, quotes, market, base_currency, settings.assumed_portfolio_value)
    weights = [position.weight_pct / 100 for position in positions]

    for position in positions:
        if not position.quote.is_default:
            sectors.seed_sector_from_quote(position.holding.ticker, meta_from_quote(position.quote))
    await sectors.ensure_sectors([holding.ticker for holding in holdings])
    sector_names = [sectors.sector_for_ticker(holding.ticker) for holding in holdings]
    targets = await benchmark_sector_targets(market, benchmark, settings)
    analysis.sectors = sector_allocation(positions, sector_names, targets)

    months = settings.history_months
    bench_history, *histories = await asyncio.gather(
        market.fetch_history_monthly_close(benchmark, months, allow_synthetic=False),
        *(market.fetch_history_monthly_close(symbol, months, allow_synthetic=False) for symbol in symbols),
    )
    history_by_symbol = dict(zip(symbols, histories))
    with_history = sum(1 for holding in holdings if len(history_by_symbol[holding.symbol]) > 1)
    has_benchmark = len(bench_history) > 1 and with_history / len(holdings) > 0.5

    metrics = PortfolioMetrics(
        total_value=round(sum(position.value for position in positions), 2),
        risk_free_rate=round(risk_free, 4),
    )
    if has_benchmark:
        bench = _closes(bench_history)
        closes = pd.DataFrame({symbol: _closes(points) for symbol, points in history_by_symbol.items()})
        closes = closes.reindex(bench.index)
        symbol_weights: dict[str, float] = {}
        for position, weight in zip(positions, weights):
            symbol_weights[position.holding.symbol] = symbol_weights.get(position.holding.symbol, 0.0) + weight
        growth = weighted_growth_index(closes, symbol_weights)
        bench = bench.reindex(growth.index)
        if len(growth) > 1:
            portfolio_index = growth / growth.iloc[0] * 100
            bench_index = bench / bench.iloc[0] * 100
            analysis.performance = [
                PerformancePoint(date=str(date), portfolio=round(float(p), 2), benchmark=round(float(b), 2))
                for date, p, b in zip(portfolio_index.index, portfolio_index, bench_index)
            ]
            stats = performance_metrics(portfolio_index, bench_index, risk_free)
            metrics.volatility = round(stats["volatility"], 1)
            metrics.beta = round(stats["beta"], 2)
            metrics.max_drawdown = round(stats["max_drawdown"], 1)
            metrics.sharpe_ratio = round(stats["sharpe_ratio"], 2)
            metrics.sortino_ratio = round(stats["sortino_ratio"], 2)
            metrics.historical_portfolio_return = round(stats["portfolio_return"], 2)
            metrics.benchmark_return = round(stats["benchmark_return"], 2)
        else:
            logger.warning("Insufficient overlapping history against %s", benchmark)
            has_benchmark = False
    analysis.performance_meta.has_benchmark = has_benchmark

    metrics.portfolio_beta_spx = await _portfolio_beta_spx(market, positions)
    if metrics.portfolio_beta_spx is not None:
        metrics.beta_diff = round(metrics.portfolio_beta_spx - metrics.spx_beta, 2)
    analysis.metrics = metrics

    if has_benchmark:
        beta_for_risk = metrics.beta
    else:
        beta_for_risk = metrics.portfolio_beta_spx if metrics.portfolio_beta_spx is not None else 1.0
    analysis.risk = PortfolioRisk(
        concentration=concentration(weights),
        diversification=diversification(weights, sector_names),
        beta=beta_risk(beta_for_risk),
    )
    logger.info("Computed portfolio analysis for %d holdings against %s", len(holdings), benchmark)
    return analysis


class PortfolioAnalysisService(CachedSnapshotService[PortfolioAnalysis]):
    """Portfolio-level analysis stored in ``portfolio_analysis_snapshots``."""

    snapshot_model = PortfolioAnalysis

    async def _compute(self, portfolio: Portfolio, benchmark: str) -> PortfolioAnalysis:
        return await compute_portfolio_analysis(
            portfolio.holdings,
            benchmark,
            market=self.market,
            sectors=self.sectors,
            settings=self.settings,
            base_currency=portfolio.base_currency,
        )

    async def _read_stored(self, portfolio_id: str, benchmark: str) -> dict | None:
        return await self.store.get_analysis_snapshot(portfolio_id, benchmark)

    async def _write_stored(self, portfolio_id: str, benchmark: str, payload: dict, user_id: str) -> None:
        await self.store.upsert_analysis_snapshot(portfolio_id, benchmark, payload, refreshed_by=user_id)
