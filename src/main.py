"""FitSync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.fitsync.config_loader import get_sync_config
from src.routers import health, history, leaderboard, realtime, sync, weigh_in
from src.services.engine import EngineServices, build_services
from src.services.postgres import close_pool, ensure_schema, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("fitsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting FitSync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    config = get_sync_config()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings, config)
    services: EngineServices = app.state.services

    if services.storage_backend == "postgres":
        await init_pool(settings)
        await ensure_schema()

    loop_task: asyncio.Task | None = None
    if settings.scheduler_enabled and config.scheduler.enabled:
        loop_task = asyncio.create_task(services.scheduler.run_forever(), name="sync-scheduler")

    yield

    if loop_task is not None:
        loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await loop_task
    if services.storage_backend == "postgres":
        await close_pool()
    logger.info("FitSync API shut down")


# ---------- App factory ----------

def create_app(services: EngineServices | None = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built engine bundle (tests inject in-memory stores and
                  fake adapters).  Built from settings at startup when omitted.
    """
    settings = get_settings()

    app = FastAPI(
        title="FitSync API",
        description=(
            "Fitness data sync and challenge scoring: provider backfill, "
            "daily history, leaderboards and real-time updates."
        ),
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(history.router, prefix=v1_prefix)
    app.include_router(leaderboard.router, prefix=v1_prefix)
    app.include_router(weigh_in.router, prefix=v1_prefix)
    app.include_router(realtime.router, prefix=v1_prefix)

    return app


app = create_app()
