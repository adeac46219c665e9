"""Shared fixtures, fakes and mock API responses for FitSync engine tests."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from src.fitsync.base import (
    AccessCredential,
    FitnessProviderAdapter,
    NormalizedSample,
    day_start,
)
from src.fitsync.config_loader import SyncConfig, load_sync_config
from src.fitsync.stores import InMemoryCredentialStorage, InMemoryHistoryStore

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Canonical test user and "today"
TEST_USER_ID = "user-123"
TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 15, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = TEST_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ---------------------------------------------------------------------------
# Stores and config
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def credential_storage() -> InMemoryCredentialStorage:
    return InMemoryCredentialStorage()


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled config for tests."""
    return load_sync_config()


def make_credential(
    now: datetime = TEST_NOW,
    minutes: float = 60,
    token: str = "access-1",
    refresh_token: str | None = "refresh-1",
) -> AccessCredential:
    return AccessCredential(
        token=token,
        expires_at=now + timedelta(minutes=minutes),
        refresh_token=refresh_token,
    )


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def google_fit_aggregate_raw() -> dict:
    return json.loads((FIXTURES_DIR / "google_fit_aggregate.json").read_text())


@pytest.fixture
def fitbit_steps_raw() -> dict:
    return json.loads((FIXTURES_DIR / "fitbit_steps.json").read_text())


@pytest.fixture
def fitbit_weight_raw() -> dict:
    return json.loads((FIXTURES_DIR / "fitbit_weight.json").read_text())


# ---------------------------------------------------------------------------
# HTTP mocking
# ---------------------------------------------------------------------------


def mock_http_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> httpx.AsyncClient:
    """An AsyncClient whose every request is answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider(FitnessProviderAdapter):
    """In-memory provider holding per-day steps and weight.

    ``fetch_aggregate`` returns one raw bucket per stored day inside the
    requested range.  Queue exceptions in ``errors`` to make the next calls
    fail in order.
    """

    SOURCE_ID = "fake"
    DISPLAY_NAME = "Fake Provider"

    def __init__(self) -> None:
        super().__init__()
        self.days: dict[date, dict[str, Any]] = {}
        self.errors: list[Exception | None] = []
        self.calls: list[tuple[str, datetime, datetime]] = []
        self.refresh_calls: list[str] = []
        self.refreshed_token = "access-refreshed"

    def set_day(self, day: date, steps: int = 0, weight: float | None = None) -> None:
        self.days[day] = {"steps": steps, "weight": weight}

    async def refresh_token(self, refresh_token: str) -> AccessCredential:
        self.refresh_calls.append(refresh_token)
        return AccessCredential(
            token=self.refreshed_token,
            expires_at=TEST_NOW + timedelta(hours=1),
        )

    async def fetch_aggregate(
        self, token: str, start: datetime, end: datetime
    ) -> list[dict]:
        self.calls.append((token, start, end))
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return [
            {"date": day.isoformat(), **values}
            for day, values in sorted(self.days.items())
            if start <= day_start(day) < end
        ]

    def normalize_bucket(self, raw: dict) -> NormalizedSample:
        return NormalizedSample(
            date=date.fromisoformat(raw["date"]),
            steps=raw["steps"],
            weight_lbs=raw["weight"],
            source=self.SOURCE_ID,
        )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
