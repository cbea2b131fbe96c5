import asyncio

import pytest
from fastapi import HTTPException

from riskdesk.api.routes import (
    get_current_user_id,
    get_holdings_analysis,
    get_portfolio_analysis,
    provider_metrics,
    refresh_holdings_analysis,
    refresh_portfolio_analysis,
)
from riskdesk.errors import PortfolioNotFoundError, SnapshotPersistenceError
from riskdesk.main import create_app, lifespan
from riskdesk.providers.metrics import ProviderMetrics
from riskdesk.providers.selector import MarketData
from riskdesk.sectors.classifier import SectorClassifier


class FakeService:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple] = []

    async def get_analysis(self, portfolio_id, user_id, benchmark=None, force_refresh=False):
        self.calls.append(("get", portfolio_id, user_id, benchmark, force_refresh))
        if self.error is not None:
            raise self.error
        return "snapshot"

    async def refresh_analysis(self, portfolio_id, user_id, benchmark=None):
        self.calls.append(("refresh", portfolio_id, user_id, benchmark))
        if self.error is not None:
            raise self.error
        return "snapshot"


def test_missing_identity_is_unauthorized() -> None:
    for header in (None, "", "   "):
        with pytest.raises(HTTPException) as excinfo:
            get_current_user_id(header)
        assert excinfo.value.status_code == 401
    assert get_current_user_id(" user-1 ") == "user-1"


def test_get_holdings_passes_query_through() -> None:
    service = FakeService()

    result = asyncio.run(
        get_holdings_analysis("p1", benchmark="^NDX", force_refresh=True, user_id="u1", service=service)
    )

    assert result == "snapshot"
    assert service.calls == [("get", "p1", "u1", "^NDX", True)]


def test_unknown_portfolio_maps_to_404() -> None:
    service = FakeService(PortfolioNotFoundError("p1"))

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(get_holdings_analysis("p1", benchmark=None, force_refresh=False, user_id="u1", service=service))
    assert excinfo.value.status_code == 404

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(refresh_holdings_analysis("p1", benchmark=None, user_id="u1", service=service))
    assert excinfo.value.status_code == 404


def test_refresh_persistence_failure_maps_to_500() -> None:
    service = FakeService(SnapshotPersistenceError("p1", "^GSPC"))

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(refresh_holdings_analysis("p1", benchmark="^GSPC", user_id="u1", service=service))

    assert excinfo.value.status_code == 500
    assert service.calls == [("refresh", "p1", "u1", "^GSPC")]


def test_portfolio_analysis_routes_pass_through() -> None:
    service = FakeService()

    assert asyncio.run(
        get_portfolio_analysis("p1", benchmark="^GSPC", force_refresh=False, user_id="u1", service=service)
    ) == "snapshot"
    assert asyncio.run(refresh_portfolio_analysis("p1", benchmark=None, user_id="u1", service=service)) == "snapshot"
    assert service.calls == [("get", "p1", "u1", "^GSPC", False), ("refresh", "p1", "u1", None)]


def test_portfolio_analysis_errors_map_to_status_codes() -> None:
    missing = FakeService(PortfolioNotFoundError("p1"))
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(get_portfolio_analysis("p1", benchmark=None, force_refresh=True, user_id="u1", service=missing))
    assert excinfo.value.status_code == 404

    failing = FakeService(SnapshotPersistenceError("p1", "^GSPC"))
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(refresh_portfolio_analysis("p1", benchmark="^GSPC", user_id="u1", service=failing))
    assert excinfo.value.status_code == 500


def test_provider_metrics_endpoint() -> None:
    metrics = ProviderMetrics()
    metrics.record("yahoo", ok=True, latency_ms=10.0)
    metrics.record("yahoo", ok=False, latency_ms=30.0)

    snapshot = provider_metrics(metrics=metrics)

    assert snapshot["yahoo"]["calls"] == 2
    assert snapshot["yahoo"]["successes"] == 1
    assert snapshot["yahoo"]["errors"] == 1
    assert snapshot["yahoo"]["last_latency_ms"] == 30.0
    assert snapshot["yahoo"]["avg_latency_ms"] == pytest.approx(20.0)


def test_app_wires_routes_and_shared_state() -> None:
    app = create_app()
    paths = {route.path for route in app.routes}
    assert {
        "/health",
        "/portfolio/{portfolio_id}/holdings",
        "/portfolio/{portfolio_id}/holdings/refresh",
        "/portfolio/{portfolio_id}/analysis",
        "/portfolio/{portfolio_id}/analysis/refresh",
        "/providers/metrics",
    } <= paths

    async def run() -> None:
        async with lifespan(app):
            assert isinstance(app.state.market_data, MarketData)
            assert isinstance(app.state.sector_classifier, SectorClassifier)
            assert app.state.market_data.metrics is app.state.provider_metrics

    asyncio.run(run())
