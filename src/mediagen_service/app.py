"""FastAPI application factory for the media generation job service.

Run with the ``mediagen-api`` console script (or ``python -m mediagen_service.app``).
"""

from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router as jobs_router
from .config import Settings, get_settings
from .logging import configure_logging
from .models import list_models
from .monitoring import ensure_metrics_server
from .version import __version__

logger = logging.getLogger(__name__)


def _metrics_enabled(settings: Settings) -> bool:
    if os.getenv("MEDIAGEN_DISABLE_METRICS", "false").lower() in {"1", "true", "yes"}:
        return False
    return settings.monitoring.enabled


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.logging, component="api")
    if _metrics_enabled(settings):
        ensure_metrics_server(settings.monitoring.prometheus_port)

    app = FastAPI(
        title="Media Generation Job Service",
        version=__version__,
        docs_url=f"{settings.base_url}/docs",
        openapi_url=f"{settings.base_url}/openapi.json",
        redoc_url=None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(jobs_router, prefix=settings.base_url, tags=["jobs"])

    @app.get("/healthz")
    async def liveness() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    logger.info(
        "%s %s ready at %s with %s models (store=%s)",
        settings.service_name,
        __version__,
        settings.base_url,
        len(list_models()),
        settings.store.backend,
    )
    return app


def main() -> None:
    host = os.getenv("MEDIAGEN_API_HOST", "0.0.0.0")
    port = int(os.getenv("MEDIAGEN_API_PORT", "8000"))
    reload_enabled = os.getenv("MEDIAGEN_API_RELOAD", "false").lower() in {"1", "true", "yes"}
    uvicorn.run(
        "mediagen_service.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload_enabled,
    )


if __name__ == "__main__":
    main()
