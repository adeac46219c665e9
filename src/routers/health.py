"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import asyncpg
from fastapi import APIRouter

from src.config import get_settings
from src.dependencies import Services
from src.services.postgres import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("fitsync.health")


@router.get("/health")
async def health_check(services: Services) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    With the postgres backend, also performs a lightweight DB connectivity
    check; the in-memory backend is always reported as connected.
    """
    settings = get_settings()
    db_ok = True
    if services.storage_backend == "postgres":
        db_ok = False
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            db_ok = True
        except (RuntimeError, OSError, asyncpg.PostgresError) as exc:
            logger.warning("Health check DB probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "provider": services.adapter.SOURCE_ID,
        "storage": services.storage_backend,
        "database": "connected" if db_ok else "unreachable",
        "sync_users": len(services.scheduler.registered_users),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
