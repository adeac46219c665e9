"""Base classes and canonical data models for the FitSync engine.

Every provider adapter must subclass FitnessProviderAdapter and return the
canonical NormalizedSample model.  The dataclasses here are the single source
of truth shared by the gap planner, reconciler, scoring engine, stores, and
the API layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import httpx

from src.fitsync.errors import (
    MalformedResponse,
    ProviderRateLimited,
    ProviderTransientError,
    ProviderUnauthorized,
    ReauthorizationRequired,
)

logger = logging.getLogger("fitsync.base")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_start(day: date) -> datetime:
    """Return UTC midnight at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def utc_date(moment: datetime) -> date:
    """Return the UTC calendar day of ``moment`` (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass
class AccessCredential:
    """Delegated-access credential for an external fitness provider.

    Attributes:
        token:         Bearer token for provider API calls.
        expires_at:    UTC datetime when the token expires.
        refresh_token: Refresh artifact used for silent refresh, if granted.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes.
    """

    token: str
    expires_at: datetime
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: list[str] = field(default_factory=list)

    def is_usable(self, now: datetime, buffer: timedelta) -> bool:
        """True if the token will still be valid ``buffer`` from now."""
        return now < self.expires_at - buffer


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class DailyHistoryEntry:
    """One user's fitness data for one UTC calendar day.

    Unique on (user_id, date).  Created the first time a sample for the day is
    reconciled and mutated in place afterwards; never deleted by the engine.

    Attributes:
        user_id:    Provider-linked user identifier.
        date:       Calendar day (UTC).
        steps:      Step count (>= 0).  Zero is ambiguous with "no data".
        weight_lbs: Body weight in pounds, or None if not recorded that day.
        source:     Slug of whoever last wrote the row ('google_fit', 'fitbit', 'manual').
        updated_at: UTC timestamp of the last write.
    """

    user_id: str
    date: date
    steps: int = 0
    weight_lbs: float | None = None
    source: str = "sync"
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Challenge:
    """A group challenge, read-only to the engine.

    Attributes:
        challenge_id:           Challenge identifier.
        name:                   Display name.
        step_goal:              Daily step goal for a step point.
        start_date:             First day that counts (inclusive), None = open.
        end_date:               Last day that counts (inclusive), None = open.
        weight_loss_thresholds: Optional [{min_pct, points}] weight-loss policy.
        weigh_in_day:           Weekday name ('monday'...) of the weekly weigh-in.
    """

    challenge_id: str
    name: str = ""
    step_goal: int = 10000
    start_date: date | None = None
    end_date: date | None = None
    weight_loss_thresholds: list[dict] | None = None
    weigh_in_day: str | None = None

    def first_weigh_in_day(self) -> date | None:
        """First ``weigh_in_day`` weekday on or after ``start_date``."""
        if self.start_date is None or not self.weigh_in_day:
            return None
        try:
            target = WEEKDAYS.index(self.weigh_in_day.strip().lower())
        except ValueError:
            return None
        return self.start_date + timedelta(days=(target - self.start_date.weekday()) % 7)

    def contains(self, day: date) -> bool:
        if self.start_date is not None and day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        return True


@dataclass
class ChallengeParticipant:
    """A user's standing within one challenge.

    Invariant after every scoring pass:
    ``points == step_goal_points + weight_loss_points``.

    Attributes:
        challenge_id:            Challenge identifier.
        user_id:                 User identifier.
        starting_weight:         Weight (lbs) at the first weigh-in.
        last_weight:             Most recent known weight (lbs).
        last_step_count:         Today's step count at the last sync.
        last_step_date:          Last calendar day credited with a step point.
        step_goal_points:        Points from step-goal days.
        weight_loss_points:      Points from weight-loss percentage.
        points:                  Total points.
        step_goal_days_achieved: Distinct days the step goal was met.
    """

    challenge_id: str
    user_id: str
    starting_weight: float | None = None
    last_weight: float | None = None
    last_step_count: int = 0
    last_step_date: date | None = None
    step_goal_points: int = 0
    weight_loss_points: int = 0
    points: int = 0
    step_goal_days_achieved: int = 0


@dataclass
class UserProfile:
    """The current-state row for a user, used for real-time snapshots."""

    user_id: str
    name: str | None = None
    steps: int | None = None
    weight_lbs: float | None = None
    last_sync: datetime | None = None


# ---------------------------------------------------------------------------
# Derived / transient models
# ---------------------------------------------------------------------------


@dataclass
class NormalizedSample:
    """Canonical per-day sample derived from any provider bucket.

    Attributes:
        date:       UTC calendar day the bucket starts on.
        steps:      Step count (0 when the provider had no step data).
        weight_lbs: Authoritative weight for the day in pounds, or None.
        source:     Provider slug.
    """

    date: date
    steps: int = 0
    weight_lbs: float | None = None
    source: str = "unknown"


@dataclass
class LeaderboardEntry:
    """One ranked row of a challenge leaderboard (derived, not primary data)."""

    user_id: str
    name: str
    points: int
    rank: int
    step_goal_points: int = 0
    weight_loss_points: int = 0
    step_goal_days_achieved: int = 0


@dataclass
class UserSnapshot:
    """Finalized per-user state handed to the real-time transport."""

    user_id: str
    steps: int | None
    weight_lbs: float | None
    last_sync: datetime | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "steps": self.steps,
            "weight": self.weight_lbs,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
        }


@dataclass
class LeaderboardUpdate:
    """A challenge leaderboard handed to the real-time transport."""

    challenge_id: str
    leaderboard: list[LeaderboardEntry]

    def to_payload(self) -> dict[str, Any]:
        return {
            "challengeId": self.challenge_id,
            "leaderboard": [
                {
                    "userId": e.user_id,
                    "name": e.name,
                    "points": e.points,
                    "rank": e.rank,
                }
                for e in self.leaderboard
            ],
        }


# ---------------------------------------------------------------------------
# Abstract base adapter
# ---------------------------------------------------------------------------


class FitnessProviderAdapter(ABC):
    """Abstract base class for external fitness provider adapters.

    An adapter issues one time-bucketed (1 day per bucket) aggregate query for
    step-count and body-weight data and normalizes the provider's response
    into NormalizedSample records.

    Subclasses must implement:
        - refresh_token()
        - fetch_aggregate()
        - normalize_bucket()
    """

    #: Unique slug stored in DailyHistoryEntry.source (e.g. 'google_fit').
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging and UI.
    DISPLAY_NAME: str = "Unknown Provider"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        """
        Args:
            http_client:     Optional pre-configured httpx client (for testing).
            timeout_seconds: Upper bound for every provider request.
        """
        self._http_client = http_client
        self._timeout = timeout_seconds

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> AccessCredential:
        """Silently exchange a refresh artifact for a new access credential.

        Args:
            refresh_token: Stored refresh token.

        Returns:
            New AccessCredential.

        Raises:
            ReauthorizationRequired: The provider rejected the refresh token.
            ProviderTransientError:  Any other failure.
        """

    @abstractmethod
    async def fetch_aggregate(
        self, token: str, start: datetime, end: datetime
    ) -> list[dict]:
        """Fetch daily buckets of steps and weight for ``[start, end)``.

        Args:
            token: Valid access token.
            start: UTC start of the range.
            end:   UTC end of the range.

        Returns:
            List of raw provider buckets.

        Raises:
            ProviderUnauthorized, ProviderRateLimited, ProviderTransientError,
            MalformedResponse.
        """

    @abstractmethod
    def normalize_bucket(self, raw: dict) -> NormalizedSample:
        """Convert one raw bucket into a NormalizedSample.

        This is a pure function: no I/O, no side effects.

        Raises:
            MalformedResponse: If steps/weight/date cannot be extracted.
        """

    # ------------------------------------------------------------------
    # Shared behaviour
    # ------------------------------------------------------------------

    def normalize_buckets(
        self, raws: list[dict]
    ) -> tuple[list[NormalizedSample], int]:
        """Normalize a list of buckets, skipping malformed ones.

        Returns:
            (samples, skipped_count)
        """
        samples: list[NormalizedSample] = []
        skipped = 0
        for raw in raws:
            try:
                samples.append(self.normalize_bucket(raw))
            except MalformedResponse as exc:
                skipped += 1
                logger.warning("%s: skipping malformed bucket: %s", self.DISPLAY_NAME, exc)
        return samples, skipped

    async def fetch_samples(
        self, token: str, start: datetime, end: datetime
    ) -> tuple[list[NormalizedSample], int]:
        """Fetch and normalize in one step.  Returns (samples, skipped_count)."""
        raws = await self.fetch_aggregate(token, start, end)
        return self.normalize_buckets(raws)

    # ------------------------------------------------------------------
    # Shared helpers, available to all adapters
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one HTTP request, mapping transport failures to ProviderTransientError."""
        try:
            if self._http_client:
                return await self._http_client.request(
                    method, url, timeout=self._timeout, **kwargs
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTransientError(
                f"{self.DISPLAY_NAME} request timed out after {self._timeout}s",
                source=self.SOURCE_ID,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderTransientError(
                f"{self.DISPLAY_NAME} transport error: {exc}", source=self.SOURCE_ID
            ) from exc

    def _check_response(self, response: httpx.Response) -> None:
        """Map a provider HTTP response onto the provider error taxonomy."""
        status = response.status_code
        if status < 400:
            return
        body = response.text[:500]
        if status == 401:
            raise ProviderUnauthorized(
                f"{self.DISPLAY_NAME} rejected the access token",
                status_code=status, source=self.SOURCE_ID,
            )
        if status == 429 or (status == 403 and "RATE_LIMIT_EXCEEDED" in body):
            raise ProviderRateLimited(
                f"{self.DISPLAY_NAME} rate limit exceeded",
                status_code=status, source=self.SOURCE_ID,
            )
        raise ProviderTransientError(
            f"{self.DISPLAY_NAME} API error: {status} - {body}",
            status_code=status, source=self.SOURCE_ID,
        )

    async def _exchange_refresh_token(
        self, token_url: str, refresh_token: str, **kwargs: Any
    ) -> AccessCredential:
        """POST a refresh_token grant and parse the OAuth2 token response.

        Extra keyword arguments (``data``, ``auth``, ``headers``) are merged
        into the request.
        """
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        data.update(kwargs.pop("data", {}))
        response = await self._send("POST", token_url, data=data, **kwargs)

        if response.status_code in (400, 401) or "invalid_grant" in response.text[:500]:
            raise ReauthorizationRequired(
                f"{self.DISPLAY_NAME} refresh rejected ({response.status_code})"
            )
        if response.status_code >= 400:
            raise ProviderTransientError(
                f"{self.DISPLAY_NAME} token refresh failed: {response.status_code}",
                status_code=response.status_code, source=self.SOURCE_ID,
            )
        payload = self._json(response)
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise MalformedResponse(
                f"{self.DISPLAY_NAME} token response has no access_token",
                source=self.SOURCE_ID,
            )
        scope = payload.get("scope") or ""
        return AccessCredential(
            token=payload["access_token"],
            expires_at=self._expiry_from(payload.get("expires_in")),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type", "Bearer"),
            scope=scope.split() if isinstance(scope, str) else list(scope),
        )

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"{self.DISPLAY_NAME} returned a non-JSON body",
                status_code=response.status_code, source=self.SOURCE_ID,
            ) from exc

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _expiry_from(expires_in: object, default_seconds: int = 3600) -> datetime:
        try:
            seconds = int(expires_in)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            seconds = default_seconds
        return utc_now() + timedelta(seconds=seconds)
