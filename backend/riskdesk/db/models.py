# backend/riskdesk/db/models.py

import datetime
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Portfolio(Base):
    __tablename__ = "portfolios"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String, nullable=False)
    base_currency = Column(String, default="USD")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    holdings = relationship("PortfolioHolding", back_populates="portfolio", order_by="PortfolioHolding.created_at")

    def __repr__(self):
        return f"<Portfolio(id='{self.id}', name='{self.name}')>"


class PortfolioHolding(Base):
    __tablename__ = "portfolio_holdings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    portfolio_id = Column(UUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    ticker = Column(String, nullable=False)
    weight = Column(Float, nullable=False, default=0.0)
    shares = Column(Float)
    purchase_price = Column(Float)
    currency_code = Column(String)
    quote_symbol = Column(String, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    portfolio = relationship("Portfolio", back_populates="holdings")

    def __repr__(self):
        return f"<PortfolioHolding(ticker='{self.ticker}', shares={self.shares})>"


class HoldingsSnapshotRecord(Base):
    __tablename__ = "portfolio_holdings_snapshots"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "benchmark", name="portfolio_holdings_snapshots_unique"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    portfolio_id = Column(UUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    benchmark = Column(String, nullable=False)
    payload = Column(JSONB, nullable=False)
    refreshed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    refreshed_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<HoldingsSnapshotRecord(portfolio_id='{self.portfolio_id}', benchmark='{self.benchmark}')>"


class AnalysisSnapshotRecord(Base):
    __tablename__ = "portfolio_analysis_snapshots"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "benchmark", name="portfolio_analysis_snapshots_unique"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    portfolio_id = Column(UUID(as_uuid=True), ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False)
    benchmark = Column(String, nullable=False)
    payload = Column(JSONB, nullable=False)
    refreshed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    refreshed_by = Column(UUID(as_uuid=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<AnalysisSnapshotRecord(portfolio_id='{self.portfolio_id}', benchmark='{self.benchmark}')>"


Index(
    "portfolio_analysis_snapshots_recent",
    AnalysisSnapshotRecord.portfolio_id,
    AnalysisSnapshotRecord.refreshed_at.desc(),
)
