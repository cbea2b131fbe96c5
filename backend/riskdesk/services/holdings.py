from __future__ import annotations

import logging
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from riskdesk.config.settings import Settings, settings as default_settings
from riskdesk.db.store import PortfolioStore
from riskdesk.errors import PortfolioNotFoundError, SnapshotPersistenceError
from riskdesk.providers.selector import MarketData
from riskdesk.schemas.holdings import HoldingsSnapshot, Portfolio
from riskdesk.sectors.classifier import SectorClassifier
from riskdesk.services.snapshot import compute_holdings_snapshot


logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT", bound=BaseModel)


class CachedSnapshotService(Generic[SnapshotT]):
    """Read-through snapshot cache keyed by (portfolio, benchmark).

    Subclasses say how a snapshot is computed and which table stores it.
    """

    snapshot_model: type[SnapshotT]

    def __init__(
        self,
        store: PortfolioStore,
        market: MarketData,
        sectors: SectorClassifier,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.market = market
        self.sectors = sectors
        self.settings = settings or default_settings

    def normalize_benchmark(self, benchmark: str | None) -> str:
        cleaned = (benchmark or "").strip().upper()
        return cleaned or self.settings.default_benchmark

    async def _load_portfolio(self, portfolio_id: str, user_id: str) -> Portfolio:
        portfolio = await self.store.load_portfolio(portfolio_id, user_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio

    async def _compute(self, portfolio: Portfolio, benchmark: str) -> SnapshotT:
        raise NotImplementedError

    async def _read_stored(self, portfolio_id: str, benchmark: str) -> dict | None:
        raise NotImplementedError

    async def _write_stored(self, portfolio_id: str, benchmark: str, payload: dict, user_id: str) -> None:
        raise NotImplementedError

    async def _persist(self, portfolio: Portfolio, benchmark: str, snapshot: SnapshotT, user_id: str) -> None:
        payload = snapshot.model_dump(mode="json", by_alias=True)
        try:
            await self._write_stored(portfolio.id, benchmark, payload, user_id)
        except (SQLAlchemyError, OSError) as exc:
            raise SnapshotPersistenceError(portfolio.id, benchmark) from exc

    async def get_analysis(
        self,
        portfolio_id: str,
        user_id: str,
        benchmark: str | None = None,
        force_refresh: bool = False,
    ) -> SnapshotT:
        """Return the stored snapshot, computing and storing one on a miss.

        ``force_refresh`` behaves like :meth:`refresh_analysis`.
        """
        benchmark = self.normalize_benchmark(benchmark)
        portfolio = await self._load_portfolio(portfolio_id, user_id)
        if force_refresh:
            return await self._refresh(portfolio, benchmark, user_id)

        cached = await self._read_stored(portfolio.id, benchmark)
        if cached is not None:
            try:
                return self.snapshot_model.model_validate(cached)
            except ValidationError:
                logger.warning("Stored snapshot for %s (%s) is unreadable; recomputing", portfolio.id, benchmark)

        snapshot = await self._compute(portfolio, benchmark)
        try:
            await self._persist(portfolio, benchmark, snapshot, user_id)
        except SnapshotPersistenceError:
            logger.exception("Serving unsaved snapshot for %s (%s)", portfolio.id, benchmark)
        return snapshot

    async def refresh_analysis(self, portfolio_id: str, user_id: str, benchmark: str | None = None) -> SnapshotT:
        benchmark = self.normalize_benchmark(benchmark)
        portfolio = await self._load_portfolio(portfolio_id, user_id)
        return await self._refresh(portfolio, benchmark, user_id)

    async def _refresh(self, portfolio: Portfolio, benchmark: str, user_id: str) -> SnapshotT:
        snapshot = await self._compute(portfolio, benchmark)
        await self._persist(portfolio, benchmark, snapshot, user_id)
        return snapshot


class HoldingsAnalysisService(CachedSnapshotService[HoldingsSnapshot]):
    """Per-holding risk snapshots stored in ``portfolio_holdings_snapshots``."""

    snapshot_model = HoldingsSnapshot

    async def _compute(self, portfolio: Portfolio, benchmark: str) -> HoldingsSnapshot:
        return await compute_holdings_snapshot(
            portfolio.holdings,
            benchmark,
            market=self.market,
            sectors=self.sectors,
            settings=self.settings,
            base_currency=portfolio.base_currency,
        )

    async def _read_stored(self, portfolio_id: str, benchmark: str) -> dict | None:
        return await self.store.get_snapshot(portfolio_id, benchmark)

    async def _write_stored(self, portfolio_id: str, benchmark: str, payload: dict, user_id: str) -> None:
        await self.store.upsert_snapshot(portfolio_id, benchmark, payload, refreshed_by=user_id)
