"""One end-to-end sync cycle for one user.

Stages, awaited in order:

1. Credential: bail out early while a rate-limit cool-down is active.
2. Gap plan: compare stored history with the 30-day window.
3. Backfill fetch: one provider call for the whole window, reconciled
   against the eligible days only.
4. Today fetch: one provider call for ``[today 00:00, now]``, always run.
5. Scoring: recompute every challenge the user participates in.
6. Publish: save the user's current state and hand a snapshot to the
   real-time transport when steps or weight changed.

Provider failures never escape ``run``: they become a ``partial``,
``rate_limited`` or ``error`` SyncResult.  Store failures propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable

from src.fitsync.base import (
    FitnessProviderAdapter,
    LeaderboardUpdate,
    UserProfile,
    UserSnapshot,
    day_start,
    utc_date,
    utc_now,
)
from src.fitsync.credentials import CredentialManager
from src.fitsync.errors import (
    CredentialUnavailable,
    ProviderError,
    ProviderRateLimited,
    ProviderUnauthorized,
)
from src.fitsync.gap_planner import DEFAULT_LOOKBACK_DAYS, plan_gaps
from src.fitsync.realtime import SnapshotPublisher
from src.fitsync.reconciler import Reconciler
from src.fitsync.scoring import ParticipantScore, ScoringEngine
from src.fitsync.stores import HistoryStore

logger = logging.getLogger("fitsync.sync.cycle")


@dataclass
class SyncResult:
    """Result of a single sync cycle.

    Attributes:
        user_id:         User that was synced.
        source:          Provider slug.
        status:          'success', 'partial', 'skipped', 'rate_limited', 'error'.
        dates_synced:    Days inserted or updated.
        records_saved:   Number of history writes.
        skipped_buckets: Malformed provider buckets that were dropped.
        points_updates:  challenge_id → points earned in this cycle (non-zero only).
        error:           Error message when the cycle did not fully succeed.
        needs_reauth:    The user must re-consent before the next sync can run.
        synced_at:       UTC timestamp of completion.
    """

    user_id: str
    source: str
    status: str = "success"
    dates_synced: list[date] = field(default_factory=list)
    records_saved: int = 0
    skipped_buckets: int = 0
    points_updates: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    needs_reauth: bool = False
    synced_at: datetime = field(default_factory=utc_now)


class _CycleAborted(Exception):
    def __init__(self, status: str, message: str, needs_reauth: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.needs_reauth = needs_reauth


class SyncCycle:
    """Runs the fetch → reconcile → score → publish pipeline for one user.

    Args:
        adapter:       Provider adapter used for both fetches.
        credentials:   The user's CredentialManager.
        store:         History / participant store.
        publisher:     Optional real-time transport.
        scoring:       Scoring engine; built from ``store`` when omitted.
        lookback_days: Rolling window size.
        now:           Clock, injectable for tests.
    """

    def __init__(
        self,
        adapter: FitnessProviderAdapter,
        credentials: CredentialManager,
        store: HistoryStore,
        publisher: SnapshotPublisher | None = None,
        scoring: ScoringEngine | None = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapter = adapter
        self._credentials = credentials
        self._store = store
        self._publisher = publisher
        self._scoring = scoring or ScoringEngine(store)
        self._reconciler = Reconciler(store, now=now)
        self._lookback_days = lookback_days
        self._now = now

    @property
    def user_id(self) -> str:
        return self._credentials.user_id

    async def run(self) -> SyncResult:
        """Execute the cycle.

        Raises:
            StoreError: The store failed; writes already made stand.
        """
        user_id = self.user_id
        now = self._now()
        today = utc_date(now)
        result = SyncResult(user_id=user_id, source=self._adapter.SOURCE_ID)
        logger.info("Sync cycle started for user %s (%s)", user_id, self._adapter.DISPLAY_NAME)

        if self._credentials.is_rate_limited():
            return self._finish(
                result, "rate_limited",
                f"rate limited for another {self._credentials.cooldown_remaining()}",
            )

        history = await self._store.get_history(
            user_id, today - timedelta(days=self._lookback_days), today
        )
        plan = plan_gaps(history, today, self._lookback_days)

        failures: list[str] = []
        try:
            if not await self._fetch_and_reconcile(
                "backfill", plan.fetch_start, plan.fetch_end, plan.eligible_dates, today, result
            ):
                failures.append("backfill fetch failed")
            if not await self._fetch_and_reconcile(
                "today", day_start(today), now, (), today, result
            ):
                failures.append("today fetch failed")
        except _CycleAborted as abort:
            result.needs_reauth = abort.needs_reauth
            return self._finish(result, abort.status, str(abort))

        scores = await self._scoring.score_user(user_id, today)
        result.points_updates = {
            s.participant.challenge_id: s.points_earned for s in scores if s.points_earned
        }
        await self._publish(today, now, scores)

        if len(failures) == 2:
            return self._finish(result, "error", "; ".join(failures))
        if failures:
            return self._finish(result, "partial", failures[0])
        return self._finish(result, "success", None)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch_and_reconcile(
        self,
        label: str,
        start: datetime,
        end: datetime,
        eligible: Iterable[date],
        today: date,
        result: SyncResult,
    ) -> bool:
        """Fetch one range and reconcile it.  False when the fetch failed."""
        try:
            samples, skipped = await self._credentials.call_with_token(
                self._adapter.fetch_samples, start, end
            )
        except ProviderRateLimited as exc:
            raise _CycleAborted("rate_limited", f"{label}: {exc}") from exc
        except ProviderUnauthorized as exc:
            raise _CycleAborted(
                "error", f"{label}: token rejected after refresh", needs_reauth=True
            ) from exc
        except CredentialUnavailable as exc:
            raise _CycleAborted("error", f"{label}: {exc}", needs_reauth=True) from exc
        except ProviderError as exc:
            logger.warning("user %s %s fetch failed: %s", self.user_id, label, exc)
            return False

        result.skipped_buckets += skipped
        reconciled = await self._reconciler.upsert(self.user_id, samples, eligible, today)
        result.records_saved += reconciled.records_saved
        result.dates_synced.extend(reconciled.dates_written)
        return True

    async def _publish(
        self, today: date, now: datetime, scores: list[ParticipantScore]
    ) -> None:
        user_id = self.user_id
        profile = await self._store.get_user(user_id) or UserProfile(user_id=user_id)
        recent = await self._store.get_history(
            user_id, today - timedelta(days=self._lookback_days), today
        )

        steps = profile.steps
        todays = next((e for e in recent if e.date == today), None)
        if todays is not None:
            steps = todays.steps
        weight = profile.weight_lbs
        weighed = [e for e in recent if e.weight_lbs is not None]
        if weighed:
            weight = weighed[-1].weight_lbs

        changed = steps != profile.steps or weight != profile.weight_lbs
        profile.steps = steps
        profile.weight_lbs = weight
        profile.last_sync = now
        await self._store.save_user(profile)

        if self._publisher is None:
            return
        if changed:
            await self._publisher.publish_user(
                UserSnapshot(user_id=user_id, steps=steps, weight_lbs=weight, last_sync=now)
            )
        for score in scores:
            if score.changed:
                challenge_id = score.participant.challenge_id
                await self._publisher.publish_leaderboard(
                    LeaderboardUpdate(
                        challenge_id=challenge_id,
                        leaderboard=await self._scoring.leaderboard(challenge_id),
                    )
                )

    def _finish(self, result: SyncResult, status: str, error: str | None) -> SyncResult:
        result.status = status
        result.error = error
        result.synced_at = self._now()
        log = logger.info if status in ("success", "skipped") else logger.warning
        log(
            "Sync cycle for user %s → %d records, status=%s%s",
            result.user_id,
            result.records_saved,
            status,
            f" ({error})" if error else "",
        )
        return result
