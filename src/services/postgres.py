"""PostgreSQL persistence for FitSync via asyncpg.

Holds the module-level connection pool (created once at app startup) and the
asyncpg implementations of ``HistoryStore`` and ``CredentialStorage``.
Every write is an ``INSERT ... ON CONFLICT DO UPDATE`` keyed on the table's
natural key, so replaying a write is harmless.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings
from src.fitsync.base import (
    AccessCredential,
    Challenge,
    ChallengeParticipant,
    DailyHistoryEntry,
    UserProfile,
)
from src.fitsync.errors import StoreError
from src.fitsync.stores import CredentialStorage, HistoryStore

logger = logging.getLogger("fitsync.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS fitness_history (
    user_id     TEXT NOT NULL,
    date        DATE NOT NULL,
    steps       INTEGER NOT NULL DEFAULT 0 CHECK (steps >= 0),
    weight_lbs  DOUBLE PRECISION,
    source      TEXT NOT NULL DEFAULT 'sync',
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, date)
);

CREATE TABLE IF NOT EXISTS challenges (
    challenge_id           TEXT PRIMARY KEY,
    name                   TEXT NOT NULL DEFAULT '',
    step_goal              INTEGER NOT NULL DEFAULT 10000,
    start_date             DATE,
    end_date               DATE,
    weight_loss_thresholds JSONB,
    weigh_in_day           TEXT,
    updated_at             TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS challenge_participants (
    challenge_id            TEXT NOT NULL,
    user_id                 TEXT NOT NULL,
    starting_weight         DOUBLE PRECISION,
    last_weight             DOUBLE PRECISION,
    last_step_count         INTEGER NOT NULL DEFAULT 0,
    last_step_date          DATE,
    step_goal_points        INTEGER NOT NULL DEFAULT 0,
    weight_loss_points      INTEGER NOT NULL DEFAULT 0,
    points                  INTEGER NOT NULL DEFAULT 0,
    step_goal_days_achieved INTEGER NOT NULL DEFAULT 0,
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (challenge_id, user_id)
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id     TEXT PRIMARY KEY,
    name        TEXT,
    steps       INTEGER,
    weight_lbs  DOUBLE PRECISION,
    last_sync   TIMESTAMPTZ,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS provider_credentials (
    user_id       TEXT PRIMARY KEY,
    access_token  TEXT NOT NULL,
    expires_at    TIMESTAMPTZ NOT NULL,
    refresh_token TEXT,
    token_type    TEXT NOT NULL DEFAULT 'Bearer',
    scope         TEXT[] NOT NULL DEFAULT '{}',
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


# ---------------------------------------------------------------------------
# Pool lifecycle
# ---------------------------------------------------------------------------


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


async def ensure_schema(pool: asyncpg.Pool | None = None) -> None:
    """Create the FitSync tables if they do not exist."""
    async with (pool or get_pool()).acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("Database schema ensured")


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    On conflict, updates the non-key columns and stamps ``updated_at``.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        if "updated_at" not in update_columns:
            update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


_HISTORY_COLUMNS = ["user_id", "date", "steps", "weight_lbs", "source", "updated_at"]
_PARTICIPANT_COLUMNS = [
    "challenge_id",
    "user_id",
    "starting_weight",
    "last_weight",
    "last_step_count",
    "last_step_date",
    "step_goal_points",
    "weight_loss_points",
    "points",
    "step_goal_days_achieved",
]
_PROFILE_COLUMNS = ["user_id", "name", "steps", "weight_lbs", "last_sync"]
_CREDENTIAL_COLUMNS = [
    "user_id", "access_token", "expires_at", "refresh_token", "token_type", "scope",
]

UPSERT_HISTORY = build_upsert_query("fitness_history", _HISTORY_COLUMNS, ["user_id", "date"])
UPSERT_PARTICIPANT = build_upsert_query(
    "challenge_participants", _PARTICIPANT_COLUMNS, ["challenge_id", "user_id"]
)
UPSERT_PROFILE = build_upsert_query("user_profiles", _PROFILE_COLUMNS, ["user_id"])
UPSERT_CREDENTIAL = build_upsert_query("provider_credentials", _CREDENTIAL_COLUMNS, ["user_id"])


class _PoolBacked:
    def __init__(self, pool: asyncpg.Pool | None = None) -> None:
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        return self._pool or get_pool()

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise StoreError(f"Database operation failed: {exc}") from exc

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self._connection() as conn:
            return await conn.fetch(query, *args)

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._connection() as conn:
            return await conn.fetchrow(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._connection() as conn:
            return await conn.execute(query, *args)


# ---------------------------------------------------------------------------
# HistoryStore
# ---------------------------------------------------------------------------


class PostgresHistoryStore(_PoolBacked, HistoryStore):
    """asyncpg-backed HistoryStore."""

    async def get_history(
        self, user_id: str, start: date, end: date
    ) -> list[DailyHistoryEntry]:
        rows = await self._fetch(
            "SELECT user_id, date, steps, weight_lbs, source, updated_at "
            "FROM fitness_history WHERE user_id = $1 AND date BETWEEN $2 AND $3 "
            "ORDER BY date",
            user_id, start, end,
        )
        return [DailyHistoryEntry(**dict(r)) for r in rows]

    async def upsert_history(self, entry: DailyHistoryEntry) -> None:
        await self._execute(
            UPSERT_HISTORY,
            entry.user_id, entry.date, entry.steps, entry.weight_lbs,
            entry.source, entry.updated_at,
        )

    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> ChallengeParticipant | None:
        row = await self._fetchrow(
            f"SELECT {', '.join(_PARTICIPANT_COLUMNS)} FROM challenge_participants "
            "WHERE challenge_id = $1 AND user_id = $2",
            challenge_id, user_id,
        )
        return ChallengeParticipant(**dict(row)) if row else None

    async def upsert_participant(self, record: ChallengeParticipant) -> None:
        await self._execute(
            UPSERT_PARTICIPANT, *(getattr(record, c) for c in _PARTICIPANT_COLUMNS)
        )

    async def list_participations(self, user_id: str) -> list[ChallengeParticipant]:
        rows = await self._fetch(
            f"SELECT {', '.join(_PARTICIPANT_COLUMNS)} FROM challenge_participants "
            "WHERE user_id = $1 ORDER BY challenge_id",
            user_id,
        )
        return [ChallengeParticipant(**dict(r)) for r in rows]

    async def list_participants(self, challenge_id: str) -> list[ChallengeParticipant]:
        rows = await self._fetch(
            f"SELECT {', '.join(_PARTICIPANT_COLUMNS)} FROM challenge_participants "
            "WHERE challenge_id = $1",
            challenge_id,
        )
        return [ChallengeParticipant(**dict(r)) for r in rows]

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        row = await self._fetchrow(
            "SELECT challenge_id, name, step_goal, start_date, end_date, "
            "weight_loss_thresholds, weigh_in_day FROM challenges WHERE challenge_id = $1",
            challenge_id,
        )
        if row is None:
            return None
        data = dict(row)
        thresholds = data.get("weight_loss_thresholds")
        if isinstance(thresholds, str):
            data["weight_loss_thresholds"] = json.loads(thresholds)
        return Challenge(**data)

    async def get_user(self, user_id: str) -> UserProfile | None:
        row = await self._fetchrow(
            f"SELECT {', '.join(_PROFILE_COLUMNS)} FROM user_profiles WHERE user_id = $1",
            user_id,
        )
        return UserProfile(**dict(row)) if row else None

    async def save_user(self, profile: UserProfile) -> None:
        await self._execute(UPSERT_PROFILE, *(getattr(profile, c) for c in _PROFILE_COLUMNS))


# ---------------------------------------------------------------------------
# CredentialStorage
# ---------------------------------------------------------------------------


class PostgresCredentialStorage(_PoolBacked, CredentialStorage):
    """asyncpg-backed CredentialStorage.  One credential row per user."""

    async def load(self, user_id: str) -> AccessCredential | None:
        row = await self._fetchrow(
            "SELECT access_token, expires_at, refresh_token, token_type, scope "
            "FROM provider_credentials WHERE user_id = $1",
            user_id,
        )
        if row is None:
            return None
        return AccessCredential(
            token=row["access_token"],
            expires_at=row["expires_at"],
            refresh_token=row["refresh_token"],
            token_type=row["token_type"],
            scope=list(row["scope"] or []),
        )

    async def save(self, user_id: str, credential: AccessCredential) -> None:
        await self._execute(
            UPSERT_CREDENTIAL,
            user_id,
            credential.token,
            credential.expires_at,
            credential.refresh_token,
            credential.token_type,
            list(credential.scope),
        )
        logger.debug("Stored credential for user %s", user_id)
