from __future__ import annotations

import math

from riskdesk.config.settings import RiskWeights
from riskdesk.schemas.holdings import RiskBucket, RiskComponent, RiskFactors, RiskScoreResult


NEUTRAL_SCORE = 50
UNKNOWN_EARNINGS_SCORE = 20


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def score_linear(value: float | None, low: float, high: float, invert: bool = False) -> int | None:
    """Map ``value`` in ``[low, high]`` onto 0..100, clamped; ``None`` when missing."""
    if value is None or not math.isfinite(value) or high == low:
        return None
    t = clamp((value - low) / (high - low), 0.0, 1.0)
    return round((1 - t if invert else t) * 100)


def _or_neutral(score: int | None) -> int:
    return NEUTRAL_SCORE if score is None else score


def beta_score(beta: float | None) -> int:
    if beta is None or not math.isfinite(beta):
        return NEUTRAL_SCORE
    return int(clamp(round(100 * abs(beta - 1) / 0.8)))


def interest_coverage_score(coverage: float | None) -> int:
    if coverage is None or not math.isfinite(coverage):
        return NEUTRAL_SCORE
    if coverage <= 1:
        return 100
    return _or_neutral(score_linear(coverage, 2, 8, invert=True))


def valuation_score(trailing_pe: float | None, price_to_sales: float | None) -> tuple[int, float | None]:
    if trailing_pe is not None and trailing_pe > 0:
        return _or_neutral(score_linear(trailing_pe, 10, 40)), trailing_pe
    if price_to_sales is not None:
        return _or_neutral(score_linear(price_to_sales, 1, 10)), price_to_sales
    return NEUTRAL_SCORE, None


def short_interest_score(percent_float: float | None, short_ratio: float | None) -> int:
    scores = [
        score
        for score in (score_linear(percent_float, 2, 20), score_linear(short_ratio, 1, 8))
        if score is not None
    ]
    return max(scores) if scores else NEUTRAL_SCORE


def earnings_proximity_score(days: int | None) -> int:
    if days is None:
        return UNKNOWN_EARNINGS_SCORE
    if days <= 7:
        return 100
    if days <= 21:
        return 60
    return 0


def bucket_for(score: int) -> RiskBucket:
    if score < 33:
        return "Low"
    if score < 66:
        return "Medium"
    return "High"


def compute_risk_score(factors: RiskFactors, weights: RiskWeights | None = None) -> RiskScoreResult:
    weights = weights or RiskWeights()
    scale = 1 - weights.position_size
    x = factors

    valuation, valuation_raw = valuation_score(x.trailing_pe, x.price_to_sales)
    short_raw = x.short_percent_float if x.short_percent_float is not None else x.short_ratio

    # (key, label, score, base weight, raw value)
    rows = [
        ("vol", "Volatility (12m)", _or_neutral(score_linear(x.volatility_12m_pct, 15, 60)),
         weights.volatility, x.volatility_12m_pct),
        ("mdd", "Max Drawdown (12m)", _or_neutral(score_linear(x.max_drawdown_12m_pct, 10, 60)),
         weights.drawdown, x.max_drawdown_12m_pct),
        ("beta", "Beta", beta_score(x.beta), weights.beta, x.beta),
        ("d2e", "Debt/Equity", _or_neutral(score_linear(x.debt_to_equity, 0, 250)),
         weights.debt_to_equity, x.debt_to_equity),
        ("icov", "Interest Coverage", interest_coverage_score(x.interest_coverage),
         weights.interest_coverage, x.interest_coverage),
        ("pe", "P/E (or P/S)", valuation, weights.valuation, valuation_raw),
        ("peg", "PEG", _or_neutral(score_linear(x.peg, 1, 2.5)), weights.peg, x.peg),
        ("fcfy", "FCF Yield %", _or_neutral(score_linear(x.fcf_yield_pct, 0, 5, invert=True)),
         weights.fcf_yield, x.fcf_yield_pct),
        ("adv", "Avg $ Volume (10d)", _or_neutral(score_linear(x.avg_dollar_volume, 2e6, 50e6, invert=True)),
         weights.liquidity, x.avg_dollar_volume),
        ("short", "Short Interest", short_interest_score(x.short_percent_float, x.short_ratio),
         weights.short_interest, short_raw),
        ("evt", "Earnings Proximity", earnings_proximity_score(x.days_to_earnings),
         weights.earnings_proximity, x.days_to_earnings),
    ]

    components = [
        RiskComponent(key=key, label=label, score=score, weight=round(weight * scale, 4), raw_value=raw)
        for key, label, score, weight, raw in rows
    ]
    components.append(
        RiskComponent(
            key="pos",
            label="Position Size (weight %)",
            score=_or_neutral(score_linear(x.weight_pct, 1, 15)),
            weight=weights.position_size,
            raw_value=x.weight_pct,
        )
    )

    composite = sum(component.score * component.weight for component in components)
    risk_score = int(clamp(round(composite)))
    return RiskScoreResult(risk_score=risk_score, bucket=bucket_for(risk_score), components=components)
