from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass
from typing import Sequence

from riskdesk.analytics.fundamentals import factors_from_info
from riskdesk.analytics.stats import daily_risk_stats, max_drawdown_pct, monthly_fallback_stats
from riskdesk.config.settings import Settings, settings as default_settings
from riskdesk.providers.selector import MarketData
from riskdesk.providers.values import major_currency
from riskdesk.schemas.holdings import (
    Holding,
    HoldingAnalysis,
    HoldingsSnapshot,
    RiskFactors,
    SnapshotMeta,
)
from riskdesk.schemas.provider import OHLCPoint, Quote, default_quote
from riskdesk.scoring.scoring import compute_risk_score
from riskdesk.sectors.classifier import SectorClassifier, meta_from_quote


logger = logging.getLogger(__name__)

MIN_MONTHLY_POINTS = 6


@dataclass
class Position:
    holding: Holding
    quote: Quote
    currency: str
    shares: float
    shares_are_estimated: bool
    value: float
    has_cost_basis: bool
    return_since_purchase: float | None
    weight_pct: float = 0.0
    contribution_pct: float | None = None


def _round(value: float | None, digits: int) -> float | None:
    return None if value is None else round(value, digits)


def _value_position(holding: Holding, quote: Quote, currency: str, fx_rate: float, assumed_value: float) -> Position:
    shares_are_estimated = holding.shares is None
    if shares_are_estimated:
        shares = holding.weight * assumed_value / (quote.price * fx_rate)
    else:
        shares = holding.shares
    has_cost_basis = bool(holding.purchase_price)
    return_since_purchase = None
    if has_cost_basis:
        return_since_purchase = (quote.price - holding.purchase_price) / holding.purchase_price * 100
    return Position(
        holding=holding,
        quote=quote,
        currency=currency,
        shares=shares,
        shares_are_estimated=shares_are_estimated,
        value=quote.price * shares * fx_rate,
        has_cost_basis=has_cost_basis,
        return_since_purchase=return_since_purchase,
    )


def _price_in_major_units(holding: Holding, quote: Quote | None, base_currency: str) -> tuple[Quote, str]:
    quote = quote or default_quote()
    currency, divisor = major_currency(quote.currency or holding.currency_code, base_currency)
    if divisor != 1 and not quote.is_default:
        quote = quote.model_copy(
            update={"price": quote.price / divisor, "change": quote.change / divisor, "currency": currency}
        )
    return quote, currency


async def _fx_rates(market: MarketData, currencies: set[str], base_currency: str) -> dict[str, float]:
    ordered = sorted(currencies)
    rates = await asyncio.gather(*(market.fetch_fx_rate(currency, base_currency) for currency in ordered))
    return dict(zip(ordered, rates))


async def value_positions(
    holdings: Sequence[Holding],
    quotes: dict[str, Quote],
    market: MarketData,
    base_currency: str,
    assumed_value: float,
) -> list[Position]:
    """Positions valued in ``base_currency`` with ``weight_pct`` filled in."""
    priced = [_price_in_major_units(holding, quotes.get(holding.symbol), base_currency) for holding in holdings]
    rates = await _fx_rates(market, {currency for _, currency in priced}, base_currency)
    positions = [
        _value_position(holding, quote, currency, rates[currency], assumed_value)
        for holding, (quote, currency) in zip(holdings, priced)
    ]
    total_value = sum(position.value for position in positions)
    for position in positions:
        position.weight_pct = position.value / total_value * 100 if total_value > 0 else 0.0
    return positions


async def _risk_inputs(market: MarketData, symbol: str) -> RiskFactors:
    daily, info = await asyncio.gather(
        market.fetch_history_daily_close(symbol),
        market.fetch_fundamentals(symbol),
    )
    volatility, drawdown = daily_risk_stats(daily)
    return factors_from_info(info).model_copy(
        update={"volatility_12m_pct": volatility, "max_drawdown_12m_pct": drawdown}
    )


def _merge_factors(
    fetched: RiskFactors,
    history: Sequence[OHLCPoint],
    bench_history: Sequence[OHLCPoint],
    weight_pct: float,
) -> RiskFactors:
    """Prefer daily/fundamental inputs; fill gaps from the monthly regression."""
    fallback_volatility, fallback_beta = monthly_fallback_stats(history, bench_history, MIN_MONTHLY_POINTS)
    fallback_drawdown = None
    if len(history) >= MIN_MONTHLY_POINTS:
        fallback_drawdown = _round(max_drawdown_pct([point.close for point in history]), 1)

    beta = round(fetched.beta, 2) if fetched.beta is not None else fallback_beta
    return fetched.model_copy(
        update={
            "volatility_12m_pct": fetched.volatility_12m_pct
            if fetched.volatility_12m_pct is not None
            else fallback_volatility,
            "max_drawdown_12m_pct": fetched.max_drawdown_12m_pct
            if fetched.max_drawdown_12m_pct is not None
            else fallback_drawdown,
            "beta": beta,
            "weight_pct": weight_pct,
        }
    )


def _weighted_beta(rows: Sequence[HoldingAnalysis]) -> float:
    known = [(row.beta_12m, row.weight_pct) for row in rows if row.beta_12m is not None]
    total_weight = sum(weight for _, weight in known)
    if not known or total_weight <= 0:
        return 0.0
    return round(sum(beta * weight for beta, weight in known) / total_weight, 2)


async def compute_holdings_snapshot(
    holdings: Sequence[Holding],
    benchmark: str,
    *,
    market: MarketData,
    sectors: SectorClassifier,
    settings: Settings | None = None,
    base_currency: str = "USD",
    now: datetime.datetime | None = None,
) -> HoldingsSnapshot:
    """Value, classify and risk-score ``holdings`` against ``benchmark``.

    Depends only on current market state; persisting the result is the
    caller's job.
    """
    settings = settings or default_settings
    base_currency = (base_currency or "USD").strip().upper()
    refreshed_at = (now or datetime.datetime.now(datetime.UTC)).isoformat()
    meta = SnapshotMeta(
        benchmark=benchmark,
        base_currency=base_currency,
        risk_model=settings.risk_model_version,
        refreshed_at=refreshed_at,
    )
    if not holdings:
        return HoldingsSnapshot(holdings=[], meta=meta)

    # Quotes, FX and position values.
    symbols = list(dict.fromkeys(holding.symbol for holding in holdings))
    quotes = await market.fetch_quotes_batch(symbols)

    positions = await value_positions(holdings, quotes, market, base_currency, settings.assumed_portfolio_value)
    total_value = sum(position.value for position in positions)
    for position in positions:
        if position.return_since_purchase is not None:
            position.contribution_pct = position.return_since_purchase * position.weight_pct / 100

    # Sectors: seed from quote metadata, then resolve the rest.
    for position in positions:
        if not position.quote.is_default:
            sectors.seed_sector_from_quote(position.holding.ticker, meta_from_quote(position.quote))
    await sectors.ensure_sectors([holding.ticker for holding in holdings])

    # Monthly history for the regression fallback, daily history + fundamentals for the score.
    months = settings.history_months
    bench_history, *histories = await asyncio.gather(
        market.fetch_history_monthly_close(benchmark, months),
        *(market.fetch_history_monthly_close(symbol, months) for symbol in symbols),
    )
    history_by_symbol = dict(zip(symbols, histories))
    fetched = await asyncio.gather(*(_risk_inputs(market, symbol) for symbol in symbols))
    inputs_by_symbol = dict(zip(symbols, fetched))

    rows: list[HoldingAnalysis] = []
    for position in positions:
        holding = position.holding
        factors = _merge_factors(
            inputs_by_symbol[holding.symbol],
            history_by_symbol[holding.symbol],
            bench_history,
            position.weight_pct,
        )
        score = compute_risk_score(factors, settings.risk_weights)
        rows.append(
            HoldingAnalysis(
                id=holding.id,
                ticker=holding.ticker,
                sector=sectors.sector_for_ticker(holding.ticker),
                price=round(position.quote.price, 2),
                currency=position.currency,
                weight_pct=round(position.weight_pct, 2),
                shares=round(position.shares, 4),
                shares_are_estimated=position.shares_are_estimated,
                has_cost_basis=position.has_cost_basis,
                return_since_purchase=_round(position.return_since_purchase, 2),
                contribution_pct=_round(position.contribution_pct, 2),
                volatility_12m=factors.volatility_12m_pct,
                beta_12m=factors.beta,
                risk_score=score.risk_score,
                risk_bucket=score.bucket,
                risk_components=score.components,
            )
        )

    rows.sort(key=lambda row: row.weight_pct, reverse=True)
    meta.any_cost_basis = any(position.has_cost_basis for position in positions)
    meta.total_value = round(total_value, 2)
    meta.avg_beta_weighted = _weighted_beta(rows)
    logger.info("Computed snapshot for %d holdings against %s", len(rows), benchmark)
    return HoldingsSnapshot(holdings=rows, meta=meta)
