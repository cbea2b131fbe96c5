from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


QuoteSource = Literal["finnhub", "yahoo", "stooq", "default"]

DEFAULT_PRICE = 100.0


class Quote(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    price: float = Field(gt=0)
    change: float = 0.0
    change_percent: float = 0.0
    market_cap: Optional[float] = None
    pe: Optional[float] = None
    dividend: Optional[float] = None
    beta: Optional[float] = None
    currency: Optional[str] = None
    quote_type: Optional[str] = None
    long_name: Optional[str] = None
    short_name: Optional[str] = None
    source: QuoteSource = "default"

    @property
    def is_default(self) -> bool:
        return self.source == "default"


def default_quote() -> Quote:
    return Quote(price=DEFAULT_PRICE, change=0.0, change_percent=0.0, source="default")


class OHLCPoint(BaseModel):
    date: str
    close: float
