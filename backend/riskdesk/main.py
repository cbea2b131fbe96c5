import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from riskdesk.api.routes import router
from riskdesk.config.settings import settings
from riskdesk.providers.metrics import ProviderMetrics
from riskdesk.providers.selector import MarketData
from riskdesk.sectors.classifier import SectorClassifier


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger("riskdesk")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    metrics = ProviderMetrics()
    app.state.provider_metrics = metrics
    app.state.market_data = MarketData(settings, metrics)
    app.state.sector_classifier = SectorClassifier(settings)
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Riskdesk", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
