from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from riskdesk.schemas.provider import OHLCPoint


MONTHS_PER_YEAR = 12
TRADING_DAYS_PER_YEAR = 252


def _series(values: Sequence[float] | pd.Series) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float).reset_index(drop=True)
    return pd.Series(list(values), dtype=float)


def pct_returns(series: Sequence[float] | pd.Series) -> pd.Series:
    """Period-over-period simple returns; steps off a zero close are dropped."""
    returns = _series(series).pct_change(fill_method=None)
    return returns.replace([np.inf, -np.inf], np.nan).dropna().reset_index(drop=True)


def annualized_volatility(returns: Sequence[float] | pd.Series, periods_per_year: int) -> float:
    """Population standard deviation of period returns, annualized."""
    returns = _series(returns)
    if returns.empty:
        return 0.0
    return float(returns.std(ddof=0) * np.sqrt(periods_per_year))


def max_drawdown_pct(closes: Sequence[float] | pd.Series) -> float | None:
    series = _series(closes)
    if series.empty:
        return None
    peaks = series.cummax()
    drawdowns = series / peaks.where(peaks > 0) - 1
    worst = drawdowns.min()
    return 0.0 if pd.isna(worst) else abs(min(float(worst), 0.0)) * 100


def estimate_beta(asset: Sequence[float] | pd.Series, benchmark: Sequence[float] | pd.Series) -> float:
    """Regression slope of asset period returns on benchmark period returns.

    Series are aligned on their most recent points; a flat benchmark yields 1.
    """
    asset_returns = pct_returns(asset)
    bench_returns = pct_returns(benchmark)
    n = min(len(asset_returns), len(bench_returns))
    if n == 0:
        return 1.0
    a = asset_returns.iloc[-n:].reset_index(drop=True)
    b = bench_returns.iloc[-n:].reset_index(drop=True)
    variance = b.var(ddof=0)
    if variance == 0 or pd.isna(variance):
        return 1.0
    return float(a.cov(b, ddof=0) / variance)


def align_monthly(
    asset: Sequence[OHLCPoint], benchmark: Sequence[OHLCPoint]
) -> tuple[list[float], list[float]]:
    """Closes for the months both series share, ascending."""
    asset_closes = pd.Series({point.date: point.close for point in asset}, dtype=float)
    bench_closes = pd.Series({point.date: point.close for point in benchmark}, dtype=float)
    joined = pd.concat([asset_closes, bench_closes], axis=1, join="inner").sort_index()
    return joined.iloc[:, 0].tolist(), joined.iloc[:, 1].tolist()


def monthly_fallback_stats(
    asset: Sequence[OHLCPoint], benchmark: Sequence[OHLCPoint], min_points: int = 6
) -> tuple[float | None, float | None]:
    """``(volatility %, beta)`` from monthly closes, ``None`` where data is insufficient."""
    closes = [point.close for point in asset]
    volatility = None
    if len(closes) >= min_points:
        volatility = round(annualized_volatility(pct_returns(closes), MONTHS_PER_YEAR) * 100, 1)

    beta = None
    asset_aligned, bench_aligned = align_monthly(asset, benchmark)
    if len(asset_aligned) >= min_points:
        beta = round(estimate_beta(asset_aligned, bench_aligned), 2)
    return volatility, beta


def daily_risk_stats(closes: Sequence[float] | None, min_returns: int = 30) -> tuple[float | None, float | None]:
    """``(annualized log-return volatility %, max drawdown %)`` from daily closes."""
    if closes is None or len(closes) == 0:
        return None, None
    series = _series(closes)
    positive = series.where(series > 0)
    log_returns = np.log(positive / positive.shift(1)).dropna()
    if len(log_returns) < min_returns:
        return None, None
    volatility = round(annualized_volatility(log_returns, TRADING_DAYS_PER_YEAR) * 100, 1)
    drawdown = max_drawdown_pct(series)
    return volatility, round(drawdown, 1) if drawdown is not None else None
