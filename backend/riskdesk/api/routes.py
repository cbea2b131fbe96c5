from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from riskdesk.config.settings import settings
from riskdesk.db.session import get_session
from riskdesk.db.store import PortfolioStore
from riskdesk.errors import PortfolioNotFoundError, SnapshotPersistenceError
from riskdesk.providers.metrics import ProviderMetrics
from riskdesk.providers.selector import MarketData
from riskdesk.schemas.analysis import PortfolioAnalysis
from riskdesk.schemas.holdings import HoldingsSnapshot
from riskdesk.sectors.classifier import SectorClassifier
from riskdesk.services.analysis import PortfolioAnalysisService
from riskdesk.services.holdings import HoldingsAnalysisService

router = APIRouter()


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Authentication required."},
        )
    return user_id


def get_market_data(request: Request) -> MarketData:
    return request.app.state.market_data


def get_sector_classifier(request: Request) -> SectorClassifier:
    return request.app.state.sector_classifier


def get_provider_metrics(request: Request) -> ProviderMetrics:
    return request.app.state.provider_metrics


def get_holdings_service(
    db: AsyncSession = Depends(get_session),
    market: MarketData = Depends(get_market_data),
    sectors: SectorClassifier = Depends(get_sector_classifier),
) -> HoldingsAnalysisService:
    return HoldingsAnalysisService(PortfolioStore(db), market, sectors, settings)


def get_analysis_service(
    db: AsyncSession = Depends(get_session),
    market: MarketData = Depends(get_market_data),
    sectors: SectorClassifier = Depends(get_sector_classifier),
) -> PortfolioAnalysisService:
    return PortfolioAnalysisService(PortfolioStore(db), market, sectors, settings)


def _not_found(portfolio_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"message": f"Portfolio {portfolio_id} not found."},
    )


def _persistence_failed(exc: SnapshotPersistenceError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": str(exc)},
    )


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/portfolio/{portfolio_id}/holdings", response_model=HoldingsSnapshot)
async def get_holdings_analysis(
    portfolio_id: str,
    benchmark: str | None = Query(default=None),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    user_id: str = Depends(get_current_user_id),
    service: HoldingsAnalysisService = Depends(get_holdings_service),
) -> HoldingsSnapshot:
    try:
        return await service.get_analysis(portfolio_id, user_id, benchmark, force_refresh=force_refresh)
    except PortfolioNotFoundError:
        raise _not_found(portfolio_id)
    except SnapshotPersistenceError as exc:
        raise _persistence_failed(exc)


@router.post("/portfolio/{portfolio_id}/holdings/refresh", response_model=HoldingsSnapshot)
async def refresh_holdings_analysis(
    portfolio_id: str,
    benchmark: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: HoldingsAnalysisService = Depends(get_holdings_service),
) -> HoldingsSnapshot:
    try:
        return await service.refresh_analysis(portfolio_id, user_id, benchmark)
    except PortfolioNotFoundError:
        raise _not_found(portfolio_id)
    except SnapshotPersistenceError as exc:
        raise _persistence_failed(exc)


@router.get("/portfolio/{portfolio_id}/analysis", response_model=PortfolioAnalysis)
async def get_portfolio_analysis(
    portfolio_id: str,
    benchmark: str | None = Query(default=None),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    user_id: str = Depends(get_current_user_id),
    service: PortfolioAnalysisService = Depends(get_analysis_service),
) -> PortfolioAnalysis:
    try:
        return await service.get_analysis(portfolio_id, user_id, benchmark, force_refresh=force_refresh)
    except PortfolioNotFoundError:
        raise _not_found(portfolio_id)
    except SnapshotPersistenceError as exc:
        raise _persistence_failed(exc)


@router.post("/portfolio/{portfolio_id}/analysis/refresh", response_model=PortfolioAnalysis)
async def refresh_portfolio_analysis(
    portfolio_id: str,
    benchmark: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: PortfolioAnalysisService = Depends(get_analysis_service),
) -> PortfolioAnalysis:
    try:
        return await service.refresh_analysis(portfolio_id, user_id, benchmark)
    except PortfolioNotFoundError:
        raise _not_found(portfolio_id)
    except SnapshotPersistenceError as exc:
        raise _persistence_failed(exc)


@router.get("/providers/metrics")
def provider_metrics(metrics: ProviderMetrics = Depends(get_provider_metrics)) -> dict:
    return metrics.snapshot()
