"""Lifecycle of a delegated-access credential to a fitness provider.

One ``CredentialManager`` exists per user session.  It hands out a token that
stays valid for at least the expiry buffer, refreshes it silently when it can,
falls back to an interactive grant when the provider demands re-consent, and
remembers a rate-limit cool-down so no provider call is made while it lasts.

States::

    NO_CREDENTIAL → VALID → EXPIRING_SOON → EXPIRED
                        ↘ RATE_LIMITED (takes precedence while cooling down)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from src.fitsync.base import AccessCredential, utc_now
from src.fitsync.errors import (
    CredentialUnavailable,
    FitSyncError,
    ProviderError,
    ProviderRateLimited,
    ProviderUnauthorized,
    ReauthorizationRequired,
)
from src.fitsync.stores import CredentialStorage

logger = logging.getLogger("fitsync.credentials")

T = TypeVar("T")

SilentRefresh = Callable[[AccessCredential], Awaitable[AccessCredential]]
InteractiveGrant = Callable[[], Awaitable["AccessCredential | None"]]

DEFAULT_EXPIRY_BUFFER = timedelta(minutes=30)
DEFAULT_RATE_LIMIT_COOLDOWN = timedelta(minutes=5)


class CredentialState(str, Enum):
    NO_CREDENTIAL = "no_credential"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    RATE_LIMITED = "rate_limited"


class CredentialManager:
    """Supplies valid access tokens for one user and one provider.

    Args:
        user_id:             Owner of the credential.
        storage:             Where acquired credentials are persisted.
        silent_refresh:      Async callable exchanging the current credential's
                             refresh artifact for a new credential.  Raises
                             ``ReauthorizationRequired`` when re-consent is needed.
        interactive_grant:   Async callable asking the user to re-consent.
                             Absent in headless contexts.
        expiry_buffer:       Minimum remaining validity for a token to be used.
        rate_limit_cooldown: How long provider calls are suppressed after a 429.
        now:                 Clock, injectable for tests.
    """

    def __init__(
        self,
        user_id: str,
        storage: CredentialStorage,
        silent_refresh: SilentRefresh | None = None,
        interactive_grant: InteractiveGrant | None = None,
        *,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
        rate_limit_cooldown: timedelta = DEFAULT_RATE_LIMIT_COOLDOWN,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.user_id = user_id
        self._storage = storage
        self._silent_refresh = silent_refresh
        self._interactive_grant = interactive_grant
        self._buffer = expiry_buffer
        self._cooldown = rate_limit_cooldown
        self._now = now

        self._credential: AccessCredential | None = None
        self._loaded = False
        self._cooldown_until: datetime | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def credential(self) -> AccessCredential | None:
        return self._credential

    def state(self) -> CredentialState:
        if self.is_rate_limited():
            return CredentialState.RATE_LIMITED
        cred = self._credential
        if cred is None:
            return CredentialState.NO_CREDENTIAL
        now = self._now()
        if cred.is_usable(now, self._buffer):
            return CredentialState.VALID
        if now < cred.expires_at:
            return CredentialState.EXPIRING_SOON
        return CredentialState.EXPIRED

    def record_rate_limit(self) -> None:
        self._cooldown_until = self._now() + self._cooldown
        logger.warning(
            "Rate limited for user %s; cooling down until %s",
            self.user_id,
            self._cooldown_until.isoformat(),
        )

    def is_rate_limited(self) -> bool:
        if self._cooldown_until is None:
            return False
        if self._now() >= self._cooldown_until:
            self._cooldown_until = None
            return False
        return True

    def cooldown_remaining(self) -> timedelta:
        if not self.is_rate_limited():
            return timedelta(0)
        return self._cooldown_until - self._now()  # type: ignore[operator]

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def get_valid_token(self) -> str:
        """Return a token valid for at least the expiry buffer.

        Raises:
            CredentialUnavailable: Every refresh path is exhausted.
        """
        async with self._lock:
            await self._ensure_loaded()
            current = self._credential
            if current is not None and current.is_usable(self._now(), self._buffer):
                return current.token

            fresh: AccessCredential | None = None
            if current is not None and current.refresh_token and self._silent_refresh:
                try:
                    fresh = await self._silent_refresh(current)
                    logger.info("Silently refreshed credential for user %s", self.user_id)
                except ReauthorizationRequired:
                    logger.info(
                        "Silent refresh rejected for user %s; interactive grant needed",
                        self.user_id,
                    )
                except ProviderError as exc:
                    raise CredentialUnavailable(
                        f"Silent refresh failed for user {self.user_id}: {exc}"
                    ) from exc

            if fresh is None:
                fresh = await self._interactive()
            await self._store(fresh, previous=current)
            return fresh.token

    async def force_refresh(self) -> str:
        """Replace the current credential regardless of its expiry.

        Uses the interactive grant.  Headless managers (no interactive grant)
        fall back to one silent refresh when a refresh artifact is held.

        Raises:
            CredentialUnavailable: No path produced a new credential.
        """
        async with self._lock:
            await self._ensure_loaded()
            current = self._credential
            if (
                self._interactive_grant is None
                and current is not None
                and current.refresh_token
                and self._silent_refresh
            ):
                try:
                    fresh = await self._silent_refresh(current)
                except FitSyncError as exc:
                    raise CredentialUnavailable(
                        f"Forced refresh failed for user {self.user_id}: {exc}"
                    ) from exc
            else:
                fresh = await self._interactive()
            await self._store(fresh, previous=current)
            logger.info("Forced credential refresh for user %s", self.user_id)
            return fresh.token

    async def set_credential(self, credential: AccessCredential) -> None:
        """Install a credential obtained outside the manager (OAuth callback)."""
        async with self._lock:
            await self._ensure_loaded()
            await self._store(credential, previous=self._credential)
        logger.info("Stored new credential for user %s", self.user_id)

    async def call_with_token(
        self, func: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        """Call ``func(token, *args)`` with one refresh-and-retry on 401.

        A second 401 propagates.  A rate-limit response starts the cool-down
        and propagates.  While cooling down no call is made at all.

        Raises:
            ProviderRateLimited:   Cool-down active or the provider sent 429.
            ProviderUnauthorized:  The retried call was rejected again.
            CredentialUnavailable: No token could be obtained.
        """
        if self.is_rate_limited():
            raise ProviderRateLimited(
                f"Provider calls suspended for {self.cooldown_remaining()}"
            )
        token = await self.get_valid_token()
        try:
            return await self._call(func, token, *args)
        except ProviderUnauthorized:
            logger.info("Token rejected for user %s; refreshing once", self.user_id)
        token = await self.force_refresh()
        return await self._call(func, token, *args)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, func: Callable[..., Awaitable[T]], token: str, *args: Any) -> T:
        try:
            return await func(token, *args)
        except ProviderRateLimited:
            self.record_rate_limit()
            raise

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            stored = await self._storage.load(self.user_id)
            if self._credential is None:
                self._credential = stored
            self._loaded = True

    async def _interactive(self) -> AccessCredential:
        if self._interactive_grant is None:
            raise CredentialUnavailable(
                f"No interactive grant available for user {self.user_id}"
            )
        try:
            granted = await self._interactive_grant()
        except CredentialUnavailable:
            raise
        except FitSyncError as exc:
            raise CredentialUnavailable(
                f"Interactive grant failed for user {self.user_id}: {exc}"
            ) from exc
        if granted is None:
            raise CredentialUnavailable(f"User {self.user_id} declined the grant")
        return granted

    async def _store(
        self, fresh: AccessCredential, previous: AccessCredential | None
    ) -> None:
        if fresh.refresh_token is None and previous is not None and previous.refresh_token:
            fresh = replace(fresh, refresh_token=previous.refresh_token)
        self._credential = fresh
        await self._storage.save(self.user_id, fresh)
