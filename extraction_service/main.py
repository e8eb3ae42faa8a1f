"""Entry points for running the FastAPI application."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from hotel_rates.logging_utils import configure_logging

from .adapters.registry import load_adapter_modules
from .api.routes import router as api_router
from .config import get_settings
from .db.session import dispose_engine, init_db
from .jobs.manager import get_session_manager
from .monitoring.metrics import metrics_router
from .service import get_extraction_service

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_file, settings.log_level)

    app = FastAPI(title="Hotel Rate Extraction Orchestrator", version="0.1.0")
    app.include_router(api_router, prefix="/api")

    if settings.enable_metrics:
        app.include_router(metrics_router)

    @app.on_event("startup")
    async def _on_startup() -> None:
        load_adapter_modules(settings.adapter_modules)
        await init_db()
        recovered = await get_session_manager().recover_interrupted()
        logger.info(
            "Starting extraction service",
            extra={"environment": settings.environment, "recovered_sessions": len(recovered)},
        )

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        await get_extraction_service().drain()
        await get_session_manager().sink.aclose()
        await dispose_engine()

    return app


__all__ = ["create_app"]
