"""Server-sent events stream of a user's snapshots and leaderboard updates."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from src.dependencies import Services
from src.fitsync.base import UserSnapshot
from src.fitsync.realtime import InMemoryBroadcaster

router = APIRouter(prefix="/realtime", tags=["realtime"])
logger = logging.getLogger("fitsync.api.realtime")

KEEPALIVE_SECONDS = 15.0


def _sse(message: dict[str, Any]) -> str:
    return f"data: {json.dumps(message, default=str)}\n\n"


async def event_stream(
    request: Request,
    broadcaster: InMemoryBroadcaster,
    queue: asyncio.Queue,
    initial: dict[str, Any],
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield the initial snapshot, then queued messages until the client leaves."""
    try:
        yield _sse(initial)
        while not await request.is_disconnected():
            try:
                message = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield _sse(message)
    finally:
        broadcaster.unsubscribe(queue)
        logger.debug("SSE subscriber closed (%d remaining)", broadcaster.subscriber_count)


@router.get("/events/{user_id}")
async def stream_events(user_id: str, request: Request, services: Services) -> StreamingResponse:
    """Open an SSE stream.

    The first event is the user's current ``userData`` snapshot; later events
    arrive whenever a sync or weigh-in changes the user or a leaderboard.
    """
    profile = await services.store.get_user(user_id)
    snapshot = UserSnapshot(
        user_id=user_id,
        steps=profile.steps if profile else None,
        weight_lbs=profile.weight_lbs if profile else None,
        last_sync=profile.last_sync if profile else None,
    )
    queue = services.broadcaster.subscribe(user_id)
    return StreamingResponse(
        event_stream(
            request,
            services.broadcaster,
            queue,
            {"type": "userData", "data": snapshot.to_payload()},
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
