"""Tests for challenge scoring and leaderboards."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from src.fitsync.base import (
    Challenge,
    ChallengeParticipant,
    DailyHistoryEntry,
    UserProfile,
)
from src.fitsync.scoring import (
    ScoringEngine,
    ThresholdPolicy,
    build_leaderboard,
    policy_for,
    round_half_up_policy,
    score_participant,
    weight_loss_percentage,
)
from src.fitsync.stores import InMemoryHistoryStore
from src.fitsync.tests.conftest import TEST_USER_ID

START = date(2026, 2, 1)
CHALLENGE = Challenge(challenge_id="c1", name="February", step_goal=10000, start_date=START)


def _day(n: int) -> date:
    """Day ``n`` of the challenge (1-based)."""
    return START + timedelta(days=n - 1)


def _entry(n: int, steps: int, weight: float | None = None) -> DailyHistoryEntry:
    return DailyHistoryEntry(TEST_USER_ID, _day(n), steps=steps, weight_lbs=weight)


def _participant(**kwargs) -> ChallengeParticipant:
    return ChallengeParticipant(challenge_id="c1", user_id=TEST_USER_ID, **kwargs)


# ---------------------------------------------------------------------------
# Weight-loss policies
# ---------------------------------------------------------------------------


class TestWeightLossPolicies:
    def test_percentage(self) -> None:
        assert weight_loss_percentage(200.0, 190.0) == pytest.approx(5.0)

    def test_gain_is_zero(self) -> None:
        assert weight_loss_percentage(200.0, 205.0) == 0.0

    def test_missing_weight_is_none(self) -> None:
        assert weight_loss_percentage(None, 190.0) is None
        assert weight_loss_percentage(200.0, None) is None

    @pytest.mark.parametrize(
        ("pct", "points"), [(0.0, 0), (0.49, 0), (0.5, 1), (2.4, 2), (2.5, 3), (9.99, 10)]
    )
    def test_round_half_up(self, pct: float, points: int) -> None:
        assert round_half_up_policy(pct) == points

    def test_threshold_policy_picks_highest_reached_tier(self) -> None:
        policy = ThresholdPolicy(
            [{"min_pct": 10, "points": 7}, {"min_pct": 2, "points": 1}, {"min_pct": 5, "points": 3}]
        )
        assert policy(1.9) == 0
        assert policy(2.0) == 1
        assert policy(6.3) == 3
        assert policy(12) == 7

    def test_challenge_thresholds_override_defaults(self) -> None:
        challenge = Challenge("c2", weight_loss_thresholds=[{"min_pct": 1, "points": 50}])
        assert policy_for(challenge, [{"min_pct": 1, "points": 2}])(1.5) == 50
        assert policy_for(CHALLENGE, None) is round_half_up_policy


# ---------------------------------------------------------------------------
# score_participant
# ---------------------------------------------------------------------------


class TestScoreParticipant:
    def test_goal_day_earns_one_point(self) -> None:
        score = score_participant(_participant(), CHALLENGE, [_entry(10, 12000)], _day(10))
        assert score.participant.step_goal_days_achieved == 1
        assert score.participant.step_goal_points == 1
        assert score.participant.points == 1
        assert score.points_earned == 1
        assert score.credited_days == [_day(10)]
        assert score.participant.last_step_date == _day(10)
        assert score.participant.last_step_count == 12000

    def test_below_goal_earns_nothing(self) -> None:
        score = score_participant(_participant(), CHALLENGE, [_entry(10, 9999)], _day(10))
        assert score.participant.points == 0
        assert not score.changed

    def test_rescoring_same_day_does_not_double_credit(self) -> None:
        first = score_participant(_participant(), CHALLENGE, [_entry(10, 12000)], _day(10))
        second = score_participant(
            first.participant, CHALLENGE, [_entry(10, 15000)], _day(10)
        )
        assert second.participant.step_goal_points == 1
        assert second.points_earned == 0
        assert second.credited_days == []

    def test_days_outside_challenge_ignored(self) -> None:
        history = [
            DailyHistoryEntry(TEST_USER_ID, START - timedelta(days=1), steps=20000),
            _entry(3, 20000),
        ]
        challenge = Challenge("c1", start_date=START, end_date=_day(2))
        score = score_participant(_participant(), challenge, history, _day(3))
        assert score.participant.step_goal_points == 0

    def test_future_days_ignored(self) -> None:
        score = score_participant(_participant(), CHALLENGE, [_entry(11, 20000)], _day(10))
        assert score.participant.points == 0

    def test_late_day_before_last_credited_not_credited(self) -> None:
        participant = _participant(
            last_step_date=_day(10), step_goal_points=1, step_goal_days_achieved=1, points=1
        )
        score = score_participant(participant, CHALLENGE, [_entry(8, 20000)], _day(10))
        assert score.participant.step_goal_points == 1

    def test_weight_loss_points_and_total_invariant(self) -> None:
        participant = _participant(starting_weight=200.0)
        history = [_entry(9, 12000, 196.0), _entry(10, 3000, 194.9)]
        score = score_participant(participant, CHALLENGE, history, _day(10))
        updated = score.participant
        # 2.55% lost → 3 points
        assert updated.last_weight == 194.9
        assert updated.weight_loss_points == 3
        assert updated.points == updated.step_goal_points + updated.weight_loss_points == 4

    def test_weight_regain_reduces_points(self) -> None:
        participant = _participant(
            starting_weight=200.0, last_weight=190.0, weight_loss_points=5, points=5
        )
        score = score_participant(participant, CHALLENGE, [_entry(10, 0, 198.0)], _day(10))
        assert score.participant.weight_loss_points == 1
        assert score.points_earned == -4
        assert score.changed

    def test_no_starting_weight_no_weight_points(self) -> None:
        score = score_participant(_participant(), CHALLENGE, [_entry(10, 0, 180.0)], _day(10))
        assert score.participant.weight_loss_points == 0
        assert score.participant.last_weight == 180.0


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class TestLeaderboard:
    def test_order_and_ranks_are_deterministic(self) -> None:
        participants = [
            ChallengeParticipant("c1", "C", points=100),
            ChallengeParticipant("c1", "A", points=100),
            ChallengeParticipant("c1", "B", points=150),
        ]
        board = build_leaderboard(participants, {"A": "Ann", "B": "Bo"})
        assert [(e.user_id, e.points, e.rank) for e in board] == [
            ("B", 150, 1),
            ("A", 100, 2),
            ("C", 100, 3),
        ]
        assert board[2].name == "Unknown User"
        assert build_leaderboard(reversed(participants)) == build_leaderboard(participants)

    def test_empty(self) -> None:
        assert build_leaderboard([]) == []


# ---------------------------------------------------------------------------
# ScoringEngine (store-backed)
# ---------------------------------------------------------------------------


class TestScoringEngine:
    @pytest.mark.asyncio
    async def test_score_user_persists_changes(self, store: InMemoryHistoryStore) -> None:
        store.add_challenge(CHALLENGE)
        await store.upsert_participant(_participant())
        await store.upsert_history(_entry(10, 12000))

        scores = await ScoringEngine(store).score_user(TEST_USER_ID, _day(10))

        assert [s.points_earned for s in scores] == [1]
        saved = await store.get_participant("c1", TEST_USER_ID)
        assert saved is not None and saved.points == 1

    @pytest.mark.asyncio
    async def test_unchanged_participant_not_rewritten(self, store: InMemoryHistoryStore) -> None:
        store.add_challenge(CHALLENGE)
        await store.upsert_participant(_participant())
        await store.upsert_history(_entry(10, 12000))
        engine = ScoringEngine(store)
        await engine.score_user(TEST_USER_ID, _day(10))

        writes = store.write_count
        await engine.score_user(TEST_USER_ID, _day(10))
        assert store.write_count == writes

    @pytest.mark.asyncio
    async def test_unknown_challenge_uses_default_goal(self, store: InMemoryHistoryStore) -> None:
        await store.upsert_participant(_participant())
        await store.upsert_history(_entry(10, 6000))

        scores = await ScoringEngine(store, default_step_goal=5000).score_user(
            TEST_USER_ID, _day(10)
        )
        assert scores[0].participant.step_goal_points == 1

    @pytest.mark.asyncio
    async def test_leaderboard_uses_profile_names(self, store: InMemoryHistoryStore) -> None:
        store.add_user(UserProfile(user_id=TEST_USER_ID, name="Sam"))
        await store.upsert_participant(_participant(points=3, step_goal_points=3))

        board = await ScoringEngine(store).leaderboard("c1")
        assert board[0].name == "Sam"
        assert board[0].rank == 1
