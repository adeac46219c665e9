"""Manual weigh-in endpoint for challenge participants."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from src.dependencies import Services
from src.fitsync.base import LeaderboardUpdate, UserSnapshot
from src.fitsync.weigh_in import ParticipantNotFound, record_weigh_in
from src.models.sync import WeighInCreate, WeighInRead

router = APIRouter(prefix="/challenges", tags=["challenges"])
logger = logging.getLogger("fitsync.api.weigh_in")


@router.post(
    "/{challenge_id}/participants/{user_id}/weight",
    response_model=WeighInRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit_weigh_in(
    challenge_id: str, user_id: str, body: WeighInCreate, services: Services
) -> Any:
    """Record a weigh-in, re-score the participant and push the new state."""
    try:
        outcome = await record_weigh_in(
            services.store,
            services.scoring,
            challenge_id,
            user_id,
            body.weight,
            unit=body.unit,
            day=body.day,
        )
    except ParticipantNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    profile = await services.store.get_user(user_id)
    await services.broadcaster.publish_user(
        UserSnapshot(
            user_id=user_id,
            steps=profile.steps if profile else None,
            weight_lbs=outcome.weight_lbs,
            last_sync=profile.last_sync if profile else None,
        )
    )
    if outcome.score.changed:
        await services.broadcaster.publish_leaderboard(
            LeaderboardUpdate(
                challenge_id=challenge_id,
                leaderboard=await services.scoring.leaderboard(challenge_id),
            )
        )

    participant = outcome.score.participant
    return WeighInRead(
        challenge_id=challenge_id,
        user_id=user_id,
        weight_lbs=outcome.weight_lbs,
        date=outcome.day,
        starting_weight=participant.starting_weight,
        last_weight=participant.last_weight,
        starting_weight_set=outcome.starting_weight_set,
        weight_loss_points=participant.weight_loss_points,
        points=participant.points,
    )
