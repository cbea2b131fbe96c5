import asyncio
import datetime
import logging
import math

import pytest

from riskdesk.config.settings import Settings, settings
from riskdesk.providers.http import ProviderError
from riskdesk.providers.selector import MarketData, synthetic_monthly_series
from riskdesk.schemas.holdings import Holding
from riskdesk.schemas.provider import OHLCPoint, Quote, default_quote
from riskdesk.sectors.classifier import SectorClassifier
from riskdesk.sectors.rules import SectorMeta
from riskdesk.services.snapshot import compute_holdings_snapshot


NOW = datetime.datetime(2025, 6, 30, 12, 0, tzinfo=datetime.UTC)


class FakeMarket:
    def __init__(
        self,
        quotes: dict[str, Quote],
        monthly: dict[str, list[OHLCPoint]] | None = None,
        fundamentals: dict[str, dict] | None = None,
        fx: dict[str, float] | None = None,
    ) -> None:
        self.quotes = quotes
        self.monthly = monthly or {}
        self.fundamentals = fundamentals or {}
        self.fx = fx or {}
        self.fx_calls: list[tuple[str, str]] = []

    async def fetch_quotes_batch(self, symbols):
        return {symbol: self.quotes.get(symbol, default_quote()) for symbol in symbols}

    async def fetch_fx_rate(self, source, target):
        self.fx_calls.append((source, target))
        return 1.0 if source == target else self.fx.get(source, 1.0)

    async def fetch_history_monthly_close(self, symbol, months=None):
        return self.monthly.get(symbol) or synthetic_monthly_series(symbol, months or 12, NOW.date())

    async def fetch_history_daily_close(self, symbol):
        return None

    async def fetch_fundamentals(self, symbol):
        return self.fundamentals.get(symbol)


class OfflineClassifier(SectorClassifier):
    async def fetch_sector_meta(self, ticker: str) -> SectorMeta:
        return SectorMeta()


def _quote(price: float, currency: str = "USD") -> Quote:
    return Quote(price=price, currency=currency, source="yahoo")


def _run(holdings, market, benchmark="^GSPC", base_currency="USD"):
    return asyncio.run(
        compute_holdings_snapshot(
            holdings,
            benchmark,
            market=market,
            sectors=OfflineClassifier(),
            settings=Settings(),
            base_currency=base_currency,
            now=NOW,
        )
    )


def test_single_holding_with_cost_basis() -> None:
    holding = Holding(id="h1", ticker="AAPL", shares=10, purchase_price=100)
    snapshot = _run([holding], FakeMarket({"AAPL": _quote(150.0)}))

    row = snapshot.holdings[0]
    assert row.price == 150.0
    assert row.weight_pct == 100.0
    assert row.return_since_purchase == 50.0
    assert row.contribution_pct == 50.0
    assert row.has_cost_basis is True
    assert row.shares_are_estimated is False
    assert row.sector == "Technology"
    assert len(row.risk_components) == 12
    assert snapshot.meta.total_value == 1500.0
    assert snapshot.meta.any_cost_basis is True
    assert snapshot.meta.benchmark == "^GSPC"
    assert snapshot.meta.refreshed_at == NOW.isoformat()


def test_empty_holdings_produce_zero_snapshot() -> None:
    snapshot = _run([], FakeMarket({}))
    assert snapshot.holdings == []
    assert snapshot.meta.total_value == 0
    assert snapshot.meta.avg_beta_weighted == 0
    assert snapshot.meta.any_cost_basis is False


def test_estimated_shares_from_weight() -> None:
    holding = Holding(id="h1", ticker="XYZ", weight=0.5)
    snapshot = _run([holding], FakeMarket({"XYZ": _quote(50.0)}))

    row = snapshot.holdings[0]
    assert row.shares == 100.0
    assert row.shares_are_estimated is True
    assert row.has_cost_basis is False
    assert row.return_since_purchase is None
    assert row.contribution_pct is None


def test_sorted_by_weight_with_ties_in_input_order() -> None:
    holdings = [
        Holding(id="b", ticker="BBB", shares=1),
        Holding(id="a", ticker="AAA", shares=1),
        Holding(id="c", ticker="CCC", shares=4),
    ]
    quotes = {"AAA": _quote(10.0), "BBB": _quote(10.0), "CCC": _quote(10.0)}
    snapshot = _run(holdings, FakeMarket(quotes))

    assert [row.id for row in snapshot.holdings] == ["c", "b", "a"]
    assert [row.weight_pct for row in snapshot.holdings] == [66.67, 16.67, 16.67]


def test_recompute_is_idempotent() -> None:
    holdings = [Holding(id="h1", ticker="MSFT", shares=3), Holding(id="h2", ticker="XOM", shares=7)]
    market = FakeMarket({"MSFT": _quote(400.0), "XOM": _quote(110.0)})

    first = _run(holdings, market)
    second = _run(holdings, market)

    assert first.model_dump(by_alias=True) == second.model_dump(by_alias=True)


def test_unavailable_benchmark_history_still_yields_finite_beta(monkeypatch, caplog) -> None:
    monkeypatch.setattr(settings.providers, "finnhub_api_key", None)

    async def quotes(symbols):
        return {symbol: _quote(20.0) for symbol in symbols}

    async def history_down(symbol, months):
        raise ProviderError("any", "unreachable")

    async def no_data(symbol):
        return None

    monkeypatch.setattr("riskdesk.providers.yahoo.fetch_quotes", quotes)
    monkeypatch.setattr("riskdesk.providers.yahoo.fetch_monthly_closes", history_down)
    monkeypatch.setattr("riskdesk.providers.stooq.fetch_monthly_closes", history_down)
    monkeypatch.setattr("riskdesk.providers.yahoo.fetch_daily_closes", no_data)
    monkeypatch.setattr("riskdesk.providers.stooq.fetch_daily_closes", no_data)
    monkeypatch.setattr("riskdesk.providers.yahoo.fetch_fundamentals", no_data)
    holding = Holding(id="h1", ticker="ZZZ", shares=5)

    with caplog.at_level(logging.WARNING, logger="riskdesk.providers.selector"):
        snapshot = _run([holding], MarketData(), benchmark="^NOPE")

    row = snapshot.holdings[0]
    assert row.volatility_12m is not None
    assert row.beta_12m is not None and math.isfinite(row.beta_12m)
    assert "Monthly history unavailable for ^NOPE; using synthetic series" in caplog.messages


def test_minor_unit_quotes_are_priced_in_major_currency() -> None:
    holding = Holding(id="h1", ticker="VOD.L", shares=100)
    market = FakeMarket({"VOD.L": _quote(2500.0, currency="GBp")}, fx={"GBP": 1.25})

    snapshot = _run([holding], market)

    row = snapshot.holdings[0]
    assert row.price == 25.0
    assert row.currency == "GBP"
    assert snapshot.meta.total_value == pytest.approx(3125.0)
    assert market.fx_calls == [("GBP", "USD")]



def test_fundamental_beta_preferred_and_weighted() -> None:
    holdings = [Holding(id="h1", ticker="AAA", shares=3), Holding(id="h2", ticker="BBB", shares=1)]
    fundamentals = {
        "AAA": {"beta": 1.0},
        "BBB": {"beta": 2.004},
    }
    market = FakeMarket({"AAA": _quote(10.0), "BBB": _quote(10.0)}, fundamentals=fundamentals)

    snapshot = _run(holdings, market)

    betas = {row.ticker: row.beta_12m for row in snapshot.holdings}
    assert betas == {"AAA": 1.0, "BBB": 2.0}
    assert snapshot.meta.avg_beta_weighted == pytest.approx(1.25)


def test_values_are_converted_to_base_currency() -> None:
    holding = Holding(id="h1", ticker="SAP.DE", shares=10, currency_code="EUR")
    market = FakeMarket({"SAP.DE": _quote(100.0, currency="EUR")}, fx={"EUR": 1.1})

    snapshot = _run([holding], market)

    assert snapshot.meta.base_currency == "USD"
    assert snapshot.meta.total_value == pytest.approx(1100.0)
    assert snapshot.holdings[0].currency == "EUR"
    assert snapshot.holdings[0].price == 100.0
    assert ("EUR", "USD") in market.fx_calls


def test_quote_symbol_overrides_ticker_for_lookups() -> None:
    holding = Holding(id="h1", ticker="BRK B", quote_symbol="brk-b", shares=2)
    snapshot = _run([holding], FakeMarket({"BRK-B": _quote(420.0)}))

    assert snapshot.holdings[0].ticker == "BRK B"
    assert snapshot.holdings[0].price == 420.0


def test_payload_uses_wire_names() -> None:
    holding = Holding(id="h1", ticker="AAPL", shares=1)
    payload = _run([holding], FakeMarket({"AAPL": _quote(10.0)})).model_dump(mode="json", by_alias=True)

    row = payload["holdings"][0]
    assert {"weightPct", "volatility12m", "beta12m", "riskScore", "riskBucket", "riskComponents"} <= set(row)
    assert {"avgBetaWeighted", "anyCostBasis", "totalValue", "riskModel", "refreshedAt"} <= set(payload["meta"])
