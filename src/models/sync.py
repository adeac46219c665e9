"""Pydantic models for sync results, history, leaderboards and weigh-ins."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import Field

from src.models.base import FitSyncBase


# ---------- Sync ----------

class SyncResultRead(FitSyncBase):
    user_id: str
    source: str
    status: Literal["success", "partial", "skipped", "rate_limited", "error"]
    dates_synced: list[date] = Field(default_factory=list)
    records_saved: int = 0
    skipped_buckets: int = 0
    points_updates: dict[str, int] = Field(default_factory=dict)
    error: str | None = None
    needs_reauth: bool = False
    synced_at: datetime


class CredentialGrant(FitSyncBase):
    """Tokens handed over by the client after an OAuth consent screen."""

    access_token: str = Field(min_length=1)
    expires_in: int = Field(default=3600, gt=0)
    refresh_token: str | None = None
    scope: list[str] = Field(default_factory=list)


# ---------- History ----------

class HistoryEntryRead(FitSyncBase):
    date: date
    steps: int = Field(ge=0)
    weight_lbs: float | None = None
    source: str
    updated_at: datetime


class HistoryRead(FitSyncBase):
    user_id: str
    start_date: date
    end_date: date
    entries: list[HistoryEntryRead]


# ---------- Leaderboard ----------

class LeaderboardEntryRead(FitSyncBase):
    user_id: str
    name: str
    points: int
    rank: int = Field(ge=1)
    step_goal_points: int = 0
    weight_loss_points: int = 0
    step_goal_days_achieved: int = 0


class LeaderboardRead(FitSyncBase):
    challenge_id: str
    leaderboard: list[LeaderboardEntryRead]


# ---------- Weigh-in ----------

class WeighInCreate(FitSyncBase):
    weight: float = Field(gt=0, le=1500)
    unit: Literal["lbs", "kg"] = "lbs"
    day: date | None = Field(default=None, alias="date")


class WeighInRead(FitSyncBase):
    challenge_id: str
    user_id: str
    weight_lbs: float
    date: date
    starting_weight: float | None = None
    last_weight: float | None = None
    starting_weight_set: bool = False
    weight_loss_points: int = 0
    points: int = 0
