"""Tests for the asyncpg-backed stores, against a mocked connection pool."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.fitsync.base import AccessCredential, DailyHistoryEntry
from src.fitsync.errors import StoreError
from src.fitsync.tests.conftest import TEST_NOW, TEST_USER_ID
from src.services.postgres import (
    UPSERT_HISTORY,
    PostgresCredentialStorage,
    PostgresHistoryStore,
    build_upsert_query,
)


class _Acquire:
    def __init__(self, conn: MagicMock) -> None:
        self.conn = conn

    async def __aenter__(self) -> MagicMock:
        return self.conn

    async def __aexit__(self, *exc_info: object) -> bool:
        return False


def _pool(conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    pool.acquire.return_value = _Acquire(conn)
    return pool


class TestUpsertQuery:
    def test_builds_on_conflict_update(self) -> None:
        sql = build_upsert_query("t", ["a", "b", "c"], ["a"])
        assert sql == (
            "INSERT INTO t (a, b, c) VALUES ($1, $2, $3) "
            "ON CONFLICT (a) DO UPDATE SET b = EXCLUDED.b, c = EXCLUDED.c, updated_at = NOW()"
        )

    def test_explicit_updated_at_not_stamped_twice(self) -> None:
        assert UPSERT_HISTORY.count("updated_at") == 3

    def test_key_only_table_does_nothing_on_conflict(self) -> None:
        assert build_upsert_query("t", ["a"], ["a"]).endswith("DO NOTHING")


class TestPostgresHistoryStore:
    @pytest.mark.asyncio
    async def test_get_history_maps_rows(self) -> None:
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[{
            "user_id": TEST_USER_ID,
            "date": date(2026, 2, 22),
            "steps": 9100,
            "weight_lbs": 181.0,
            "source": "fitbit",
            "updated_at": TEST_NOW,
        }])
        store = PostgresHistoryStore(_pool(conn))

        [entry] = await store.get_history(TEST_USER_ID, date(2026, 2, 1), date(2026, 2, 28))

        assert entry == DailyHistoryEntry(
            TEST_USER_ID, date(2026, 2, 22), 9100, 181.0, "fitbit", TEST_NOW
        )
        assert conn.fetch.await_args.args[1:] == (
            TEST_USER_ID, date(2026, 2, 1), date(2026, 2, 28),
        )

    @pytest.mark.asyncio
    async def test_upsert_history_passes_columns_in_order(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="INSERT 0 1")
        entry = DailyHistoryEntry(TEST_USER_ID, date(2026, 2, 22), 9100, None, "google_fit", TEST_NOW)

        await PostgresHistoryStore(_pool(conn)).upsert_history(entry)

        conn.execute.assert_awaited_once_with(
            UPSERT_HISTORY, TEST_USER_ID, date(2026, 2, 22), 9100, None, "google_fit", TEST_NOW
        )

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=OSError("connection reset"))

        with pytest.raises(StoreError, match="connection reset"):
            await PostgresHistoryStore(_pool(conn)).get_user(TEST_USER_ID)

    @pytest.mark.asyncio
    async def test_challenge_thresholds_decoded_from_json(self) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={
            "challenge_id": "c1",
            "name": "Spring",
            "step_goal": 8000,
            "start_date": date(2026, 3, 1),
            "end_date": None,
            "weight_loss_thresholds": '[{"min_pct": 5, "points": 3}]',
            "weigh_in_day": "monday",
        })

        challenge = await PostgresHistoryStore(_pool(conn)).get_challenge("c1")

        assert challenge is not None
        assert challenge.weight_loss_thresholds == [{"min_pct": 5, "points": 3}]
        assert challenge.step_goal == 8000


class TestPostgresCredentialStorage:
    @pytest.mark.asyncio
    async def test_load_missing(self) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)
        assert await PostgresCredentialStorage(_pool(conn)).load(TEST_USER_ID) is None

    @pytest.mark.asyncio
    async def test_load_row(self) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={
            "access_token": "tok",
            "expires_at": TEST_NOW,
            "refresh_token": "r1",
            "token_type": "Bearer",
            "scope": ["fitness.activity.read"],
        })

        credential = await PostgresCredentialStorage(_pool(conn)).load(TEST_USER_ID)

        assert credential == AccessCredential(
            token="tok", expires_at=TEST_NOW, refresh_token="r1",
            scope=["fitness.activity.read"],
        )
