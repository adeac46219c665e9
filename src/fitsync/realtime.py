"""Real-time fan-out of finalized user snapshots and leaderboards.

The sync cycle hands finished state to a ``SnapshotPublisher``.  The
in-process ``InMemoryBroadcaster`` delivers each message to per-connection
``asyncio.Queue`` subscribers; the SSE route in ``src.routers.realtime``
drains one queue per open connection.

Message shape::

    {"type": "userData", "data": {"userId", "steps", "weight", "lastSync"}}
    {"type": "leaderboard", "data": {"challengeId", "leaderboard": [...]}}
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from src.fitsync.base import LeaderboardUpdate, UserSnapshot

logger = logging.getLogger("fitsync.realtime")


class SnapshotPublisher(ABC):
    """Downstream consumer of finalized per-user snapshots."""

    @abstractmethod
    async def publish_user(self, snapshot: UserSnapshot) -> None: ...

    @abstractmethod
    async def publish_leaderboard(self, update: LeaderboardUpdate) -> None: ...


class _Subscription:
    __slots__ = ("user_id", "queue")

    def __init__(self, user_id: str | None, maxsize: int) -> None:
        self.user_id = user_id
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)


class InMemoryBroadcaster(SnapshotPublisher):
    """Process-local pub/sub.

    A subscriber bound to a user receives that user's snapshots plus every
    leaderboard update; a subscriber bound to ``None`` receives everything.
    Slow subscribers lose their oldest pending message rather than blocking
    the sync cycle.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._max_queue_size = max_queue_size
        self._subscriptions: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, user_id: str | None = None) -> asyncio.Queue[dict[str, Any]]:
        sub = _Subscription(user_id, self._max_queue_size)
        self._subscriptions.append(sub)
        logger.debug("Subscriber added for %s (%d total)", user_id or "*", len(self._subscriptions))
        return sub.queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.queue is not queue]

    async def publish_user(self, snapshot: UserSnapshot) -> None:
        message = {"type": "userData", "data": snapshot.to_payload()}
        delivered = self._deliver(message, user_id=snapshot.user_id)
        logger.debug("Published snapshot for user %s to %d subscriber(s)", snapshot.user_id, delivered)

    async def publish_leaderboard(self, update: LeaderboardUpdate) -> None:
        message = {"type": "leaderboard", "data": update.to_payload()}
        delivered = self._deliver(message, user_id=None)
        logger.debug(
            "Published leaderboard %s to %d subscriber(s)", update.challenge_id, delivered
        )

    def _deliver(self, message: dict[str, Any], user_id: str | None) -> int:
        delivered = 0
        for sub in list(self._subscriptions):
            if user_id is not None and sub.user_id not in (None, user_id):
                continue
            if sub.queue.full():
                sub.queue.get_nowait()
                logger.warning("Subscriber queue for %s full; dropped oldest message", sub.user_id)
            sub.queue.put_nowait(message)
            delivered += 1
        return delivered
