"""FitSync fitness data synchronization and scoring engine.

This package keeps a per-day history of steps and body weight in sync with an
external fitness provider, and turns that history into challenge points and
a ranked leaderboard.

Subpackages:
    adapters/ — Provider-specific API adapters (Google Fit, Fitbit)
    sync/     — Per-user sync cycle and scheduler

Core modules:
    base          — FitnessProviderAdapter ABC and canonical data models
    credentials   — Access token lifecycle, refresh, rate-limit cool-down
    gap_planner   — Which days of the 30-day window may be overwritten
    reconciler    — Idempotent, non-regressing history upserts
    scoring       — Step-goal and weight-loss points, leaderboards
    realtime      — Snapshot publishing to live subscribers
    stores        — Storage contracts and in-memory implementations
    units         — kg ↔ lbs conversion
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.fitsync.base import (
    AccessCredential,
    Challenge,
    ChallengeParticipant,
    DailyHistoryEntry,
    FitnessProviderAdapter,
    LeaderboardEntry,
    NormalizedSample,
    UserProfile,
)
from src.fitsync.config_loader import SyncConfig, get_sync_config

__all__ = [
    "FitnessProviderAdapter",
    "AccessCredential",
    "DailyHistoryEntry",
    "Challenge",
    "ChallengeParticipant",
    "UserProfile",
    "NormalizedSample",
    "LeaderboardEntry",
    "SyncConfig",
    "get_sync_config",
]
