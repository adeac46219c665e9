"""Challenge points and leaderboards.

A participant earns one step point per calendar day on which the challenge's
step goal is met, at most once per day, and weight-loss points derived from
the percentage lost since their starting weight.  Points are always
recomputed as ``step_goal_points + weight_loss_points``.

``score_participant`` and ``build_leaderboard`` are pure; ``ScoringEngine``
wires them to a HistoryStore.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, Iterable, Mapping

from src.fitsync.base import (
    Challenge,
    ChallengeParticipant,
    DailyHistoryEntry,
    LeaderboardEntry,
)
from src.fitsync.stores import HistoryStore

logger = logging.getLogger("fitsync.scoring")

DEFAULT_STEP_GOAL = 10000

WeightLossPolicy = Callable[[float], int]


# ---------------------------------------------------------------------------
# Weight-loss policies
# ---------------------------------------------------------------------------


def weight_loss_percentage(start: float | None, current: float | None) -> float | None:
    """Percent of ``start`` lost, floored at 0.  None unless both are positive."""
    if not start or not current or start <= 0 or current <= 0:
        return None
    return max(0.0, (start - current) / start * 100)


def round_half_up_policy(percentage: float) -> int:
    """One point per percent lost; a fractional part of .5 or more rounds up."""
    if percentage <= 0:
        return 0
    return int(math.floor(percentage + 0.5))


class ThresholdPolicy:
    """Tiered points: the highest tier whose ``min_pct`` has been reached.

    Args:
        thresholds: ``[{"min_pct": 5, "points": 3}, ...]`` in any order.
    """

    def __init__(self, thresholds: Iterable[Mapping]) -> None:
        self.tiers = sorted(
            ((float(t["min_pct"]), int(t["points"])) for t in thresholds),
            key=lambda tier: tier[0],
        )

    def __call__(self, percentage: float) -> int:
        points = 0
        for min_pct, tier_points in self.tiers:
            if percentage >= min_pct:
                points = tier_points
        return points


def policy_for(
    challenge: Challenge, default_thresholds: list[dict] | None = None
) -> WeightLossPolicy:
    thresholds = challenge.weight_loss_thresholds or default_thresholds
    if thresholds:
        return ThresholdPolicy(thresholds)
    return round_half_up_policy


# ---------------------------------------------------------------------------
# Pure scoring
# ---------------------------------------------------------------------------


@dataclass
class ParticipantScore:
    """Outcome of scoring one participant.

    Attributes:
        participant:   Updated copy of the record.
        points_earned: Change in total points from this pass (may be negative).
        credited_days: Days newly credited with a step point.
    """

    participant: ChallengeParticipant
    points_earned: int = 0
    credited_days: list[date] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.credited_days) or self.points_earned != 0


def score_participant(
    participant: ChallengeParticipant,
    challenge: Challenge,
    history: Iterable[DailyHistoryEntry],
    today: date,
    policy: WeightLossPolicy = round_half_up_policy,
) -> ParticipantScore:
    """Recompute one participant's points from their history.

    A day is credited only when it is later than ``last_step_date``, so a day
    is never credited twice.  A day that arrives late, earlier than a day
    already credited, is not credited either.
    """
    updated = replace(participant)
    step_goal = challenge.step_goal if challenge.step_goal > 0 else DEFAULT_STEP_GOAL
    entries = sorted(
        (e for e in history if e.date <= today and challenge.contains(e.date)),
        key=lambda e: e.date,
    )

    credited: list[date] = []
    for entry in entries:
        if entry.steps < step_goal:
            continue
        if updated.last_step_date is not None and entry.date <= updated.last_step_date:
            continue
        updated.step_goal_points += 1
        updated.step_goal_days_achieved += 1
        updated.last_step_date = entry.date
        credited.append(entry.date)

    todays = next((e for e in entries if e.date == today), None)
    if todays is not None:
        updated.last_step_count = todays.steps

    weighed = [e for e in entries if e.weight_lbs is not None and e.weight_lbs > 0]
    if weighed:
        updated.last_weight = weighed[-1].weight_lbs

    pct = weight_loss_percentage(updated.starting_weight, updated.last_weight)
    updated.weight_loss_points = policy(pct) if pct is not None else 0
    updated.points = updated.step_goal_points + updated.weight_loss_points

    return ParticipantScore(
        participant=updated,
        points_earned=updated.points - participant.points,
        credited_days=credited,
    )


def build_leaderboard(
    participants: Iterable[ChallengeParticipant],
    names: Mapping[str, str | None] | None = None,
) -> list[LeaderboardEntry]:
    """Rank by points descending then user id ascending; ranks are sequential."""
    names = names or {}
    ordered = sorted(participants, key=lambda p: (-p.points, p.user_id))
    return [
        LeaderboardEntry(
            user_id=p.user_id,
            name=names.get(p.user_id) or "Unknown User",
            points=p.points,
            rank=i,
            step_goal_points=p.step_goal_points,
            weight_loss_points=p.weight_loss_points,
            step_goal_days_achieved=p.step_goal_days_achieved,
        )
        for i, p in enumerate(ordered, start=1)
    ]


# ---------------------------------------------------------------------------
# Store-backed engine
# ---------------------------------------------------------------------------


class ScoringEngine:
    """Scores a user across every challenge they participate in."""

    def __init__(
        self,
        store: HistoryStore,
        default_step_goal: int = DEFAULT_STEP_GOAL,
        weight_loss_thresholds: list[dict] | None = None,
    ) -> None:
        self._store = store
        self._default_step_goal = default_step_goal
        self._default_thresholds = weight_loss_thresholds

    async def score_user(self, user_id: str, today: date) -> list[ParticipantScore]:
        """Score every participation of ``user_id``.

        All scores are computed before anything is written, so an interrupted
        pass leaves every participant either fully updated or untouched.
        """
        scores: list[ParticipantScore] = []
        pending: list[tuple[ChallengeParticipant, ParticipantScore]] = []
        for participant in await self._store.list_participations(user_id):
            challenge = await self._challenge(participant.challenge_id)
            history = await self._store.get_history(
                user_id, challenge.start_date or date.min, today
            )
            score = score_participant(
                participant,
                challenge,
                history,
                today,
                policy_for(challenge, self._default_thresholds),
            )
            scores.append(score)
            pending.append((participant, score))

        for original, score in pending:
            if score.participant != original:
                await self._store.upsert_participant(score.participant)
            if score.changed:
                logger.info(
                    "Scored user %s in challenge %s: %+d points (total %d)",
                    user_id,
                    score.participant.challenge_id,
                    score.points_earned,
                    score.participant.points,
                )
        return scores

    async def leaderboard(self, challenge_id: str) -> list[LeaderboardEntry]:
        participants = await self._store.list_participants(challenge_id)
        names: dict[str, str | None] = {}
        for p in participants:
            profile = await self._store.get_user(p.user_id)
            names[p.user_id] = profile.name if profile else None
        return build_leaderboard(participants, names)

    async def _challenge(self, challenge_id: str) -> Challenge:
        challenge = await self._store.get_challenge(challenge_id)
        if challenge is None:
            logger.warning("Challenge %s not found; scoring with defaults", challenge_id)
            return Challenge(challenge_id=challenge_id, step_goal=self._default_step_goal)
        return challenge
