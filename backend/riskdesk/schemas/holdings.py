from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


RiskBucket = Literal["Low", "Medium", "High"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Holding(_CamelModel):
    id: str
    ticker: str
    weight: float = 0.0
    shares: Optional[float] = Field(default=None, ge=0)
    purchase_price: Optional[float] = Field(default=None, ge=0)
    currency_code: Optional[str] = None
    quote_symbol: Optional[str] = None

    @property
    def symbol(self) -> str:
        return (self.quote_symbol or self.ticker).strip().upper()


class Portfolio(_CamelModel):
    id: str
    user_id: str
    name: Optional[str] = None
    base_currency: str = "USD"
    holdings: list[Holding] = Field(default_factory=list)


class RiskFactors(_CamelModel):
    volatility_12m_pct: Optional[float] = None
    max_drawdown_12m_pct: Optional[float] = None
    beta: Optional[float] = None
    debt_to_equity: Optional[float] = None
    interest_coverage: Optional[float] = None
    trailing_pe: Optional[float] = None
    price_to_sales: Optional[float] = None
    peg: Optional[float] = None
    fcf_yield_pct: Optional[float] = None
    avg_dollar_volume: Optional[float] = None
    short_percent_float: Optional[float] = None
    short_ratio: Optional[float] = None
    days_to_earnings: Optional[int] = None
    weight_pct: Optional[float] = None


class RiskComponent(_CamelModel):
    key: str
    label: str
    score: int
    weight: float
    raw_value: Optional[float] = None


class RiskScoreResult(_CamelModel):
    risk_score: int
    bucket: RiskBucket
    components: list[RiskComponent] = Field(default_factory=list)


class HoldingAnalysis(_CamelModel):
    id: str
    ticker: str
    sector: str
    price: float
    currency: Optional[str] = None
    weight_pct: float
    shares: float
    shares_are_estimated: bool = False
    has_cost_basis: bool
    return_since_purchase: Optional[float] = None
    contribution_pct: Optional[float] = None
    volatility_12m: Optional[float] = Field(default=None, alias="volatility12m")
    beta_12m: Optional[float] = Field(default=None, alias="beta12m")
    risk_score: int
    risk_bucket: RiskBucket
    risk_components: list[RiskComponent] = Field(default_factory=list)


class SnapshotMeta(_CamelModel):
    benchmark: str
    base_currency: str = "USD"
    any_cost_basis: bool = False
    total_value: float = 0.0
    avg_beta_weighted: float = 0.0
    risk_model: str
    refreshed_at: str


class HoldingsSnapshot(_CamelModel):
    holdings: list[HoldingAnalysis] = Field(default_factory=list)
    meta: SnapshotMeta
