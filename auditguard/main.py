from dotenv import load_dotenv
load_dotenv()  # before settings are read

import logging

from fastapi import FastAPI
from starlette.responses import JSONResponse

from auditguard.api.routes_alerts import router as alerts_router
from auditguard.api.routes_breach import router as breach_router
from auditguard.api.routes_debug import router as debug_router
from auditguard.api.routes_events import router as events_router
from auditguard.api.routes_metrics import router as metrics_router
from auditguard.api.routes_siem import router as siem_router
from auditguard.core.pipeline import Pipeline, build_pipeline
from auditguard.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Settings | None = None, pipeline: Pipeline | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="auditguard", version=settings.APP_VERSION)
    app.state.pipeline = pipeline or build_pipeline(settings)

    @app.get("/health")
    def health():
        return JSONResponse({"status": "ok"})

    app.include_router(metrics_router)
    app.include_router(events_router)
    app.include_router(breach_router)
    app.include_router(alerts_router)
    app.include_router(siem_router)
    app.include_router(debug_router)

    @app.on_event("startup")
    async def _startup():
        # SIEM flush timer (APScheduler)
        app.state.pipeline.start()

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.pipeline.stop()

    return app


app = create_app()
