"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.services.engine import EngineServices


async def get_services(request: Request) -> EngineServices:
    """Return the engine bundle the lifespan stored on ``app.state``."""
    services: EngineServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return services


# Annotated shortcuts for route signatures
Services = Annotated[EngineServices, Depends(get_services)]
