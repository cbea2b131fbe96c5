from __future__ import annotations

import datetime
import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from riskdesk.db.models import AnalysisSnapshotRecord, HoldingsSnapshotRecord, Portfolio, PortfolioHolding
from riskdesk.schemas.holdings import Holding, Portfolio as PortfolioSchema


SnapshotRecord = HoldingsSnapshotRecord | AnalysisSnapshotRecord


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return None


def _to_holding(row: PortfolioHolding) -> Holding:
    return Holding(
        id=str(row.id),
        ticker=(row.ticker or "").strip().upper(),
        weight=row.weight or 0.0,
        shares=row.shares,
        purchase_price=row.purchase_price,
        currency_code=row.currency_code,
        quote_symbol=row.quote_symbol,
    )


class PortfolioStore:
    """Portfolio reads and snapshot upserts over an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_portfolio(self, portfolio_id: str, user_id: str) -> PortfolioSchema | None:
        pid, uid = _as_uuid(portfolio_id), _as_uuid(user_id)
        if pid is None or uid is None:
            return None
        result = await self.session.execute(
            select(Portfolio)
            .options(selectinload(Portfolio.holdings))
            .where(Portfolio.id == pid, Portfolio.user_id == uid)
        )
        portfolio = result.scalar_one_or_none()
        if portfolio is None:
            return None
        return PortfolioSchema(
            id=str(portfolio.id),
            user_id=str(portfolio.user_id),
            name=portfolio.name,
            base_currency=(portfolio.base_currency or "USD").upper(),
            holdings=[_to_holding(row) for row in portfolio.holdings],
        )

    async def _get_payload(self, record: type[SnapshotRecord], portfolio_id: str, benchmark: str) -> dict | None:
        pid = _as_uuid(portfolio_id)
        if pid is None:
            return None
        result = await self.session.execute(
            select(record).where(record.portfolio_id == pid, record.benchmark == benchmark)
        )
        row = result.scalar_one_or_none()
        return row.payload if row is not None else None

    async def _upsert_payload(
        self,
        record: type[SnapshotRecord],
        portfolio_id: str,
        benchmark: str,
        payload: dict,
        refreshed_by: str | None,
    ) -> None:
        now = datetime.datetime.now(datetime.UTC)
        insert_values = {
            "portfolio_id": _as_uuid(portfolio_id),
            "benchmark": benchmark,
            "payload": payload,
            "refreshed_at": now,
            "refreshed_by": _as_uuid(refreshed_by),
            "created_at": now,
            "updated_at": now,
        }
        update_values = {
            record.payload: payload,
            record.refreshed_at: now,
            record.refreshed_by: _as_uuid(refreshed_by),
            record.updated_at: now,
        }
        stmt = insert(record).values(**insert_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[record.portfolio_id, record.benchmark],
            set_=update_values,
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    async def get_snapshot(self, portfolio_id: str, benchmark: str) -> dict | None:
        return await self._get_payload(HoldingsSnapshotRecord, portfolio_id, benchmark)

    async def upsert_snapshot(
        self,
        portfolio_id: str,
        benchmark: str,
        payload: dict,
        refreshed_by: str | None = None,
    ) -> None:
        await self._upsert_payload(HoldingsSnapshotRecord, portfolio_id, benchmark, payload, refreshed_by)

    async def get_analysis_snapshot(self, portfolio_id: str, benchmark: str) -> dict | None:
        return await self._get_payload(AnalysisSnapshotRecord, portfolio_id, benchmark)

    async def upsert_analysis_snapshot(
        self,
        portfolio_id: str,
        benchmark: str,
        payload: dict,
        refreshed_by: str | None = None,
    ) -> None:
        await self._upsert_payload(AnalysisSnapshotRecord, portfolio_id, benchmark, payload, refreshed_by)
