"""Storage contracts for the sync engine, plus in-memory implementations.

The engine never talks to a database directly; it depends on ``HistoryStore``
and ``CredentialStorage``.  The in-memory versions back the test-suite and
single-process deployments.  ``src.services.postgres`` provides the asyncpg
versions.

Every implementation must make ``upsert_*`` idempotent: writing a record that
is equal to what is stored leaves the store unchanged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date

from src.fitsync.base import (
    AccessCredential,
    Challenge,
    ChallengeParticipant,
    DailyHistoryEntry,
    UserProfile,
)


class HistoryStore(ABC):
    """Persistent per-day history, challenge participation and user state."""

    @abstractmethod
    async def get_history(
        self, user_id: str, start: date, end: date
    ) -> list[DailyHistoryEntry]:
        """Return entries with ``start <= date <= end``, ordered by date."""

    @abstractmethod
    async def upsert_history(self, entry: DailyHistoryEntry) -> None:
        """Insert or replace the entry keyed by (user_id, date)."""

    @abstractmethod
    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> ChallengeParticipant | None: ...

    @abstractmethod
    async def upsert_participant(self, record: ChallengeParticipant) -> None: ...

    @abstractmethod
    async def list_participations(self, user_id: str) -> list[ChallengeParticipant]:
        """Every challenge record the user participates in."""

    @abstractmethod
    async def list_participants(self, challenge_id: str) -> list[ChallengeParticipant]: ...

    @abstractmethod
    async def get_challenge(self, challenge_id: str) -> Challenge | None: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def save_user(self, profile: UserProfile) -> None: ...


class CredentialStorage(ABC):
    """Where a CredentialManager persists what it acquires."""

    @abstractmethod
    async def load(self, user_id: str) -> AccessCredential | None: ...

    @abstractmethod
    async def save(self, user_id: str, credential: AccessCredential) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryHistoryStore(HistoryStore):
    """Dict-backed HistoryStore.  Records are copied on the way in and out."""

    def __init__(self) -> None:
        self.history: dict[tuple[str, date], DailyHistoryEntry] = {}
        self.participants: dict[tuple[str, str], ChallengeParticipant] = {}
        self.challenges: dict[str, Challenge] = {}
        self.users: dict[str, UserProfile] = {}
        self.write_count = 0

    # Seeding helpers for tests and local runs

    def add_challenge(self, challenge: Challenge) -> None:
        self.challenges[challenge.challenge_id] = replace(challenge)

    def add_user(self, profile: UserProfile) -> None:
        self.users[profile.user_id] = replace(profile)

    # HistoryStore

    async def get_history(
        self, user_id: str, start: date, end: date
    ) -> list[DailyHistoryEntry]:
        rows = [
            replace(e)
            for (uid, day), e in self.history.items()
            if uid == user_id and start <= day <= end
        ]
        return sorted(rows, key=lambda e: e.date)

    async def upsert_history(self, entry: DailyHistoryEntry) -> None:
        self.history[(entry.user_id, entry.date)] = replace(entry)
        self.write_count += 1

    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> ChallengeParticipant | None:
        record = self.participants.get((challenge_id, user_id))
        return replace(record) if record else None

    async def upsert_participant(self, record: ChallengeParticipant) -> None:
        self.participants[(record.challenge_id, record.user_id)] = replace(record)
        self.write_count += 1

    async def list_participations(self, user_id: str) -> list[ChallengeParticipant]:
        return [replace(p) for (_, uid), p in self.participants.items() if uid == user_id]

    async def list_participants(self, challenge_id: str) -> list[ChallengeParticipant]:
        return [replace(p) for (cid, _), p in self.participants.items() if cid == challenge_id]

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        challenge = self.challenges.get(challenge_id)
        return replace(challenge) if challenge else None

    async def get_user(self, user_id: str) -> UserProfile | None:
        profile = self.users.get(user_id)
        return replace(profile) if profile else None

    async def save_user(self, profile: UserProfile) -> None:
        self.users[profile.user_id] = replace(profile)


class InMemoryCredentialStorage(CredentialStorage):
    def __init__(self) -> None:
        self.credentials: dict[str, AccessCredential] = {}

    async def load(self, user_id: str) -> AccessCredential | None:
        cred = self.credentials.get(user_id)
        return replace(cred) if cred else None

    async def save(self, user_id: str, credential: AccessCredential) -> None:
        self.credentials[user_id] = replace(credential)
