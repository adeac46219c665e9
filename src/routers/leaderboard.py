"""Challenge leaderboard endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Services
from src.models.sync import LeaderboardEntryRead, LeaderboardRead

router = APIRouter(prefix="/leaderboard", tags=["challenges"])


@router.get("/{challenge_id}", response_model=LeaderboardRead)
async def get_leaderboard(challenge_id: str, services: Services) -> Any:
    entries = await services.scoring.leaderboard(challenge_id)
    if not entries and await services.store.get_challenge(challenge_id) is None:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return LeaderboardRead(
        challenge_id=challenge_id,
        leaderboard=[LeaderboardEntryRead.model_validate(e) for e in entries],
    )
