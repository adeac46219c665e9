"""Manual weigh-ins entered by a challenge participant.

A weigh-in is written to the day's history entry with source ``manual``
(creating the entry with zero steps if needed) and updates the participant's
last weight.  The first weigh-in on or after the challenge start sets the
starting weight, as does a weigh-in on the challenge's first weigh-in day.
The participant is then re-scored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from src.fitsync.base import DailyHistoryEntry, UserProfile, utc_date, utc_now
from src.fitsync.scoring import ParticipantScore, ScoringEngine
from src.fitsync.stores import HistoryStore
from src.fitsync.units import normalize_manual_weight

logger = logging.getLogger("fitsync.weigh_in")


class ParticipantNotFound(LookupError):
    """The user is not a participant of the challenge."""


@dataclass
class WeighInResult:
    weight_lbs: float
    day: date
    starting_weight_set: bool
    score: ParticipantScore


async def record_weigh_in(
    store: HistoryStore,
    scoring: ScoringEngine,
    challenge_id: str,
    user_id: str,
    weight: float,
    unit: str = "lbs",
    day: date | None = None,
    now: Callable[[], datetime] = utc_now,
) -> WeighInResult:
    """Record a manual weigh-in and re-score the participant.

    Args:
        store:        History / participant store.
        scoring:      Engine used to re-score after the write.
        challenge_id: Challenge the weigh-in is for.
        user_id:      Participant.
        weight:       Value entered by the user.
        unit:         ``"lbs"`` or ``"kg"``.
        day:          Calendar day of the weigh-in (defaults to today, UTC).
        now:          Clock, injectable for tests.

    Raises:
        ValueError:         The weight is not a positive number or the unit is unknown.
        ParticipantNotFound: The user has not joined the challenge.
    """
    weight_lbs = normalize_manual_weight(weight, unit)
    if weight_lbs is None:
        raise ValueError(f"Invalid weight value: {weight!r}")

    participant = await store.get_participant(challenge_id, user_id)
    if participant is None:
        raise ParticipantNotFound(f"User {user_id} is not in challenge {challenge_id}")
    challenge = await store.get_challenge(challenge_id)

    moment = now()
    day = day or utc_date(moment)

    sets_start = False
    if challenge is not None and challenge.start_date is not None and day >= challenge.start_date:
        sets_start = participant.starting_weight is None or day == challenge.first_weigh_in_day()
    elif challenge is None or challenge.start_date is None:
        sets_start = participant.starting_weight is None
    if sets_start:
        participant.starting_weight = weight_lbs
    participant.last_weight = weight_lbs
    await store.upsert_participant(participant)

    existing = await store.get_history(user_id, day, day)
    entry = existing[0] if existing else DailyHistoryEntry(user_id=user_id, date=day)
    entry.weight_lbs = weight_lbs
    entry.source = "manual"
    entry.updated_at = moment
    await store.upsert_history(entry)

    profile = await store.get_user(user_id) or UserProfile(user_id=user_id)
    profile.weight_lbs = weight_lbs
    await store.save_user(profile)

    scores = await scoring.score_user(user_id, max(day, utc_date(moment)))
    score = next(s for s in scores if s.participant.challenge_id == challenge_id)
    logger.info(
        "Weigh-in for user %s in challenge %s: %.2f lbs (starting weight %s)",
        user_id, challenge_id, weight_lbs,
        "set" if sets_start else "unchanged",
    )
    return WeighInResult(
        weight_lbs=weight_lbs, day=day, starting_weight_set=sets_start, score=score
    )
