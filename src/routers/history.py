"""Daily history endpoints."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import Services
from src.fitsync.base import utc_date, utc_now
from src.models.sync import HistoryEntryRead, HistoryRead

router = APIRouter(prefix="/users", tags=["history"])

DEFAULT_HISTORY_DAYS = 30


@router.get("/{user_id}/history", response_model=HistoryRead)
async def get_history(
    user_id: str,
    services: Services,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
) -> Any:
    """Return the user's daily entries between the two dates, inclusive.

    Defaults to the last 30 days ending today (UTC).
    """
    end = end_date or utc_date(utc_now())
    start = start_date or end - timedelta(days=DEFAULT_HISTORY_DAYS)
    if start > end:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date")

    entries = await services.store.get_history(user_id, start, end)
    return HistoryRead(
        user_id=user_id,
        start_date=start,
        end_date=end,
        entries=[HistoryEntryRead.model_validate(e) for e in entries],
    )
