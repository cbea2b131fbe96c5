import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from riskdesk.errors import PortfolioNotFoundError, SnapshotPersistenceError
from riskdesk.schemas.holdings import (
    Holding,
    HoldingAnalysis,
    HoldingsSnapshot,
    Portfolio,
    RiskComponent,
    SnapshotMeta,
)
from riskdesk.services.holdings import HoldingsAnalysisService


PORTFOLIO_ID = "11111111-1111-1111-1111-111111111111"
USER_ID = "22222222-2222-2222-2222-222222222222"


def build_snapshot(benchmark: str = "^GSPC", price: float = 150.0) -> HoldingsSnapshot:
    return HoldingsSnapshot(
        holdings=[
            HoldingAnalysis(
                id="h1",
                ticker="AAPL",
                sector="Technology",
                price=price,
                currency="USD",
                weight_pct=100.0,
                shares=10.0,
                has_cost_basis=True,
                return_since_purchase=50.0,
                contribution_pct=50.0,
                volatility_12m=24.5,
                beta_12m=1.2,
                risk_score=48,
                risk_bucket="Medium",
                risk_components=[RiskComponent(key="vol", label="Volatility (12m)", score=21, weight=0.18, raw_value=24.5)],
            )
        ],
        meta=SnapshotMeta(
            benchmark=benchmark,
            any_cost_basis=True,
            total_value=1500.0,
            avg_beta_weighted=1.2,
            risk_model="v1.0",
            refreshed_at="2025-06-30T12:00:00+00:00",
        ),
    )


class FakeStore:
    def __init__(self, portfolio: Portfolio | None = None, fail_upsert: bool = False) -> None:
        self.portfolio = portfolio
        self.fail_upsert = fail_upsert
        self.snapshots: dict[tuple[str, str], dict] = {}
        self.snapshot_reads = 0
        self.upserts: list[tuple[str, str, str | None]] = []

    async def load_portfolio(self, portfolio_id, user_id):
        if self.portfolio is None or self.portfolio.id != portfolio_id or self.portfolio.user_id != user_id:
            return None
        return self.portfolio

    async def get_snapshot(self, portfolio_id, benchmark):
        self.snapshot_reads += 1
        return self.snapshots.get((portfolio_id, benchmark))

    async def upsert_snapshot(self, portfolio_id, benchmark, payload, refreshed_by=None):
        self.upserts.append((portfolio_id, benchmark, refreshed_by))
        if self.fail_upsert:
            raise OperationalError("INSERT", {}, Exception("connection lost"))
        self.snapshots[(portfolio_id, benchmark)] = payload


class FakeCompute:
    def __init__(self, *snapshots: HoldingsSnapshot) -> None:
        self.snapshots = list(snapshots)
        self.calls: list[str] = []

    async def __call__(self, holdings, benchmark, **kwargs):
        self.calls.append(benchmark)
        return self.snapshots[min(len(self.calls), len(self.snapshots)) - 1]


def build_portfolio() -> Portfolio:
    return Portfolio(
        id=PORTFOLIO_ID,
        user_id=USER_ID,
        name="Core",
        holdings=[Holding(id="h1", ticker="AAPL", shares=10, purchase_price=100)],
    )


def build_service(store: FakeStore) -> HoldingsAnalysisService:
    return HoldingsAnalysisService(store, market=object(), sectors=object())


def test_unknown_portfolio_fails_before_any_work(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())

    with pytest.raises(PortfolioNotFoundError):
        asyncio.run(build_service(store).get_analysis(PORTFOLIO_ID, "someone-else"))

    assert compute.calls == []
    assert store.snapshot_reads == 0


def test_cache_miss_computes_then_serves_stored_payload(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())
    service = build_service(store)

    first = asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^gspc"))
    second = asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))

    assert compute.calls == ["^GSPC"]
    assert store.upserts == [(PORTFOLIO_ID, "^GSPC", USER_ID)]
    stored = store.snapshots[(PORTFOLIO_ID, "^GSPC")]
    assert stored == first.model_dump(mode="json", by_alias=True)
    assert "volatility12m" in stored["holdings"][0]
    assert second.model_dump(mode="json", by_alias=True) == stored


def test_missing_benchmark_uses_default(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())

    asyncio.run(build_service(store).get_analysis(PORTFOLIO_ID, USER_ID, None))

    assert compute.calls == ["^GSPC"]


def test_force_refresh_recomputes_and_overwrites(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot(price=150.0), build_snapshot(price=155.0))
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())
    service = build_service(store)

    asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))
    refreshed = asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC", force_refresh=True))

    assert len(compute.calls) == 2
    assert refreshed.holdings[0].price == 155.0
    assert store.snapshots[(PORTFOLIO_ID, "^GSPC")]["holdings"][0]["price"] == 155.0


def test_snapshots_are_keyed_by_benchmark(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot("^GSPC"), build_snapshot("^NDX"))
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())
    service = build_service(store)

    asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))
    asyncio.run(service.get_analysis(PORTFOLIO_ID, USER_ID, "^NDX"))

    assert compute.calls == ["^GSPC", "^NDX"]
    assert set(store.snapshots) == {(PORTFOLIO_ID, "^GSPC"), (PORTFOLIO_ID, "^NDX")}


def test_unreadable_stored_payload_is_recomputed(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())
    store.snapshots[(PORTFOLIO_ID, "^GSPC")] = {"holdings": "garbage"}

    result = asyncio.run(build_service(store).get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))

    assert compute.calls == ["^GSPC"]
    assert result.meta.total_value == 1500.0


def test_implicit_persistence_failure_still_returns_snapshot(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio(), fail_upsert=True)

    result = asyncio.run(build_service(store).get_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))

    assert result.meta.total_value == 1500.0
    assert len(store.upserts) == 1


def test_explicit_refresh_surfaces_persistence_failure(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio(), fail_upsert=True)

    with pytest.raises(SnapshotPersistenceError):
        asyncio.run(build_service(store).refresh_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))


def test_refresh_always_recomputes(monkeypatch) -> None:
    compute = FakeCompute(build_snapshot())
    monkeypatch.setattr("riskdesk.services.holdings.compute_holdings_snapshot", compute)
    store = FakeStore(build_portfolio())
    service = build_service(store)

    asyncio.run(service.refresh_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))
    asyncio.run(service.refresh_analysis(PORTFOLIO_ID, USER_ID, "^GSPC"))

    assert len(compute.calls) == 2
    assert store.snapshot_reads == 0
    assert len(store.upserts) == 2
