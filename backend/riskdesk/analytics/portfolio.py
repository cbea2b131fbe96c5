from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from riskdesk.analytics.stats import (
    MONTHS_PER_YEAR,
    annualized_volatility,
    estimate_beta,
    max_drawdown_pct,
    pct_returns,
)
from riskdesk.schemas.analysis import BetaRisk, Concentration, Diversification
from riskdesk.schemas.holdings import RiskBucket
from riskdesk.scoring.scoring import clamp


def hhi(weights: Sequence[float]) -> float:
    """Herfindahl index, sum of squared weights (fractions)."""
    return float(np.square(np.asarray(weights, dtype=float)).sum()) if len(weights) else 0.0


def effective_holdings(weights: Sequence[float]) -> float:
    index = hhi(weights)
    return 1 / index if index > 0 else 0.0


def _top_two(weights: Sequence[float]) -> float:
    return float(sum(sorted(weights, reverse=True)[:2]))


def concentration(weights: Sequence[float]) -> Concentration:
    if not weights:
        return Concentration()
    largest = max(weights) * 100
    top2 = _top_two(weights) * 100
    index = hhi(weights)
    level: RiskBucket
    if largest >= 20 or top2 >= 40 or index >= 0.18:
        level = "High"
    elif largest >= 12 or top2 >= 25 or index >= 0.10:
        level = "Medium"
    else:
        level = "Low"
    return Concentration(
        level=level,
        largest_position_pct=round(largest, 1),
        top2_pct=round(top2, 1),
        hhi=round(index, 3),
        effective_holdings=round(effective_holdings(weights), 1),
    )


def diversification(weights: Sequence[float], sectors: Sequence[str]) -> Diversification:
    """0-10 score: half breadth (5 to 15 effective names), 0.3 sector evenness, 0.2 top-two weight."""
    if not weights:
        return Diversification()
    by_sector = pd.Series(list(weights), index=list(sectors), dtype=float).groupby(level=0).sum()
    sector_hhi = hhi(by_sector.tolist())
    top2 = _top_two(weights)
    breadth = effective_holdings(weights)
    score = 10 * (
        0.5 * clamp((breadth - 5) / (15 - 5), 0, 1)
        + 0.3 * clamp((0.25 - sector_hhi) / (0.25 - 0.10), 0, 1)
        + 0.2 * clamp((0.40 - top2) / (0.40 - 0.20), 0, 1)
    )
    return Diversification(
        score=round(score, 1),
        holdings=len(weights),
        top2_pct=round(top2 * 100, 1),
        sector_hhi=round(sector_hhi, 3),
        effective_holdings=round(breadth, 1),
    )


def beta_risk(beta: float) -> BetaRisk:
    level: RiskBucket = "Low" if beta < 0.8 else "Medium" if beta <= 1.2 else "High"
    return BetaRisk(level=level, value=round(beta, 2))


def weighted_growth_index(closes: pd.DataFrame, weights: Mapping[str, float]) -> pd.Series:
    """Weighted average of each column rebased to 100 at its first close.

    Weights are renormalized over the columns that have a close on each row;
    rows with no closes are dropped.
    """
    rebased = closes.div(closes.bfill().iloc[0]) * 100
    weight_row = pd.Series(weights, dtype=float).reindex(rebased.columns).fillna(0.0)
    present = rebased.notna().mul(weight_row, axis=1)
    weighted = rebased.fillna(0.0).mul(weight_row, axis=1).sum(axis=1)
    totals = present.sum(axis=1)
    return (weighted / totals.where(totals > 0)).dropna()


def performance_metrics(portfolio: pd.Series, benchmark: pd.Series, risk_free_rate: float) -> dict[str, float]:
    """Volatility, beta, drawdown, Sharpe and Sortino from two index series rebased to 100.

    The return used by both ratios is the mean monthly return times twelve;
    Sortino's downside deviation uses a zero minimum acceptable return.
    """
    returns = pct_returns(portfolio)
    volatility = annualized_volatility(returns, MONTHS_PER_YEAR)
    annual_return = downside = 0.0
    if not returns.empty:
        annual_return = float(returns.mean() * MONTHS_PER_YEAR)
        downside = float(np.sqrt((returns.clip(upper=0) ** 2).mean()) * np.sqrt(MONTHS_PER_YEAR))
    return {
        "volatility": volatility * 100,
        "beta": estimate_beta(portfolio, benchmark),
        "max_drawdown": max_drawdown_pct(portfolio) or 0.0,
        "sharpe_ratio": (annual_return - risk_free_rate) / volatility if volatility > 0 else 0.0,
        "sortino_ratio": (annual_return - risk_free_rate) / downside if downside > 0 else 0.0,
        "portfolio_return": (float(portfolio.iloc[-1]) / 100 - 1) * 100,
        "benchmark_return": (float(benchmark.iloc[-1]) / 100 - 1) * 100,
    }
