from __future__ import annotations

from typing import Optional

from pydantic import Field

from riskdesk.schemas.holdings import RiskBucket, _CamelModel


class PerformancePoint(_CamelModel):
    date: str
    portfolio: float
    benchmark: Optional[float] = None


class PerformanceMeta(_CamelModel):
    has_benchmark: bool = False
    benchmark: str


class SectorAllocation(_CamelModel):
    sector: str
    allocation: float
    target: float


class PortfolioMetrics(_CamelModel):
    historical_portfolio_return: float = 0.0
    benchmark_return: Optional[float] = None
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    beta: float = 0.0
    total_value: float = 0.0
    risk_free_rate: float = 0.0
    portfolio_beta_spx: Optional[float] = None
    spx_beta: float = 1.0
    beta_diff: Optional[float] = None


class Concentration(_CamelModel):
    level: RiskBucket = "Low"
    largest_position_pct: float = 0.0
    top2_pct: float = 0.0
    hhi: float = 0.0
    effective_holdings: float = 0.0


class Diversification(_CamelModel):
    score: float = 0.0
    holdings: int = 0
    top2_pct: float = 0.0
    sector_hhi: float = 0.0
    effective_holdings: float = 0.0


class BetaRisk(_CamelModel):
    level: RiskBucket = "Medium"
    value: float = 1.0


class PortfolioRisk(_CamelModel):
    concentration: Concentration = Field(default_factory=Concentration)
    diversification: Diversification = Field(default_factory=Diversification)
    beta: BetaRisk = Field(default_factory=BetaRisk)


class PortfolioAnalysis(_CamelModel):
    """Portfolio-level performance, risk metrics and sector mix against a benchmark."""

    performance: list[PerformancePoint] = Field(default_factory=list)
    performance_meta: PerformanceMeta
    sectors: list[SectorAllocation] = Field(default_factory=list)
    metrics: PortfolioMetrics = Field(default_factory=PortfolioMetrics)
    risk: PortfolioRisk = Field(default_factory=PortfolioRisk)
    base_currency: str = "USD"
    refreshed_at: str
