"""Per-user sync scheduling.

Coordinates when sync cycles run:

- Triggers come from the periodic loop (``run_forever``), from login, and
  from the manual refresh endpoint.
- At most one cycle runs per user.  A trigger that arrives while a cycle is
  in flight returns a ``skipped`` result instead of queueing.
- Periodic triggers skip users synced within ``min_sync_interval``; manual
  triggers bypass that check.
- The scheduler caches one CredentialManager per user, so a rate-limit
  cool-down outlives the cycle that hit it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from src.fitsync.base import AccessCredential, FitnessProviderAdapter, utc_now
from src.fitsync.credentials import (
    DEFAULT_EXPIRY_BUFFER,
    DEFAULT_RATE_LIMIT_COOLDOWN,
    CredentialManager,
    InteractiveGrant,
)
from src.fitsync.errors import FitSyncError
from src.fitsync.gap_planner import DEFAULT_LOOKBACK_DAYS
from src.fitsync.realtime import SnapshotPublisher
from src.fitsync.scoring import ScoringEngine
from src.fitsync.stores import CredentialStorage, HistoryStore
from src.fitsync.sync.cycle import SyncCycle, SyncResult

logger = logging.getLogger("fitsync.sync.scheduler")

DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_MIN_SYNC_INTERVAL = timedelta(minutes=2)


class SyncScheduler:
    """Schedule and execute sync cycles, one at a time per user.

    Usage::

        scheduler = SyncScheduler(adapter, store, credential_storage, publisher)
        result = await scheduler.trigger_sync("user-123", manual=True)
        task = asyncio.create_task(scheduler.run_forever())
    """

    def __init__(
        self,
        adapter: FitnessProviderAdapter,
        store: HistoryStore,
        credential_storage: CredentialStorage,
        publisher: SnapshotPublisher | None = None,
        scoring: ScoringEngine | None = None,
        *,
        interactive_grant_factory: Callable[[str], InteractiveGrant | None] | None = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
        rate_limit_cooldown: timedelta = DEFAULT_RATE_LIMIT_COOLDOWN,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        min_sync_interval: timedelta = DEFAULT_MIN_SYNC_INTERVAL,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            adapter:                   Provider adapter shared by all cycles.
            store:                     History / participant store.
            credential_storage:        Where credentials are loaded and saved.
            publisher:                 Optional real-time transport.
            scoring:                   Scoring engine; built from ``store`` when omitted.
            interactive_grant_factory: Returns the interactive grant callable for
                                       a user, or None in headless contexts.
            lookback_days:             Rolling window size.
            expiry_buffer:             Token validity buffer.
            rate_limit_cooldown:       Cool-down after a provider 429.
            interval_seconds:          Period of ``run_forever``.
            min_sync_interval:         Minimum gap between periodic syncs per user.
            now:                       Clock, injectable for tests.
        """
        self._adapter = adapter
        self._store = store
        self._credential_storage = credential_storage
        self._publisher = publisher
        self._scoring = scoring or ScoringEngine(store)
        self._grant_factory = interactive_grant_factory
        self._lookback_days = lookback_days
        self._expiry_buffer = expiry_buffer
        self._cooldown = rate_limit_cooldown
        self._interval = interval_seconds
        self._min_interval = min_sync_interval
        self._now = now

        self._managers: dict[str, CredentialManager] = {}
        self._running: dict[str, asyncio.Task[SyncResult]] = {}
        self._last_sync: dict[str, datetime] = {}
        self._users: set[str] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_user(self, user_id: str) -> None:
        """Include ``user_id`` in the periodic loop."""
        self._users.add(user_id)

    def unregister_user(self, user_id: str) -> None:
        self._users.discard(user_id)
        self._managers.pop(user_id, None)

    @property
    def registered_users(self) -> list[str]:
        return sorted(self._users)

    def credential_manager(self, user_id: str) -> CredentialManager:
        """Return the cached CredentialManager for a user, creating it on first use."""
        manager = self._managers.get(user_id)
        if manager is None:
            grant = self._grant_factory(user_id) if self._grant_factory else None
            manager = CredentialManager(
                user_id,
                self._credential_storage,
                silent_refresh=self._silent_refresh,
                interactive_grant=grant,
                expiry_buffer=self._expiry_buffer,
                rate_limit_cooldown=self._cooldown,
                now=self._now,
            )
            self._managers[user_id] = manager
        return manager

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def is_running(self, user_id: str) -> bool:
        task = self._running.get(user_id)
        return task is not None and not task.done()

    async def trigger_sync(self, user_id: str, manual: bool = False) -> SyncResult:
        """Run one cycle for ``user_id`` unless one is already in flight.

        Args:
            user_id: User to sync.
            manual:  True for user-initiated triggers (login, refresh button),
                     which bypass the minimum sync interval.
        """
        source = self._adapter.SOURCE_ID
        if self.is_running(user_id):
            logger.debug("Sync already running for user %s; trigger skipped", user_id)
            return SyncResult(user_id, source, status="skipped", error="sync already running")

        if not manual and not self._due(user_id):
            return SyncResult(user_id, source, status="skipped", error="synced recently")

        cycle = SyncCycle(
            self._adapter,
            self.credential_manager(user_id),
            self._store,
            publisher=self._publisher,
            scoring=self._scoring,
            lookback_days=self._lookback_days,
            now=self._now,
        )
        task = asyncio.create_task(cycle.run(), name=f"sync-{user_id}")
        self._running[user_id] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._running.get(user_id) is task:
                del self._running[user_id]

        if task.cancelled():
            logger.warning("Sync cycle for user %s was cancelled", user_id)
            return SyncResult(user_id, source, status="error", error="cancelled")
        exc = task.exception()
        if isinstance(exc, FitSyncError):
            logger.error("Sync cycle for user %s failed: %s", user_id, exc)
            return SyncResult(user_id, source, status="error", error=str(exc))
        if exc is not None:
            raise exc
        result = task.result()

        if result.status in ("success", "partial"):
            self._last_sync[user_id] = result.synced_at
        return result

    def cancel(self, user_id: str) -> bool:
        """Cancel the in-flight cycle for ``user_id``.  True if one was running."""
        task = self._running.get(user_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Cancelling sync cycle for user %s", user_id)
        return True

    async def run_once(self) -> list[SyncResult]:
        """Trigger a periodic sync for every registered user, concurrently.

        A user whose cycle raises gets an ``error`` result; the others are
        unaffected and the user is retried on the next pass.
        """
        users = self.registered_users
        if not users:
            logger.debug("SyncScheduler: no registered users")
            return []
        outcomes = await asyncio.gather(
            *(self.trigger_sync(u) for u in users), return_exceptions=True
        )

        results: list[SyncResult] = []
        for user_id, outcome in zip(users, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Sync cycle for user %s failed with exception: %r", user_id, outcome
                )
                outcome = SyncResult(
                    user_id, self._adapter.SOURCE_ID, status="error", error=repr(outcome)
                )
            results.append(outcome)

        logger.info(
            "SyncScheduler: %d users, %d synced, %d errors",
            len(results),
            sum(1 for r in results if r.status in ("success", "partial")),
            sum(1 for r in results if r.status == "error"),
        )
        return results

    async def run_forever(self) -> None:
        """Periodic loop.  Runs until cancelled."""
        logger.info("SyncScheduler: periodic loop every %ds", self._interval)
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("SyncScheduler: periodic pass failed")
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _due(self, user_id: str) -> bool:
        last = self._last_sync.get(user_id)
        if last is None:
            return True
        return self._now() - last >= self._min_interval

    async def _silent_refresh(self, credential: AccessCredential) -> AccessCredential:
        return await self._adapter.refresh_token(credential.refresh_token)
