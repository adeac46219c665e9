"""Merge normalized provider samples into the per-day history.

Only eligible days (from the GapPlan) and today may be written.  Step counts
never regress: a stored count is only replaced by a larger one.  Weight is
replaced whenever the provider supplies one and is never cleared.  Running
the same batch twice produces the same stored state and zero writes the
second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable

from src.fitsync.base import DailyHistoryEntry, NormalizedSample, utc_now
from src.fitsync.stores import HistoryStore

logger = logging.getLogger("fitsync.reconciler")


@dataclass
class ReconcileResult:
    """Counts from one reconciliation pass.

    Attributes:
        inserted:      New (user, date) entries created.
        updated:       Existing entries changed.
        skipped:       Samples that led to no write.
        dates_written: Days inserted or updated, ascending.
    """

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    dates_written: list[date] = field(default_factory=list)

    @property
    def records_saved(self) -> int:
        return self.inserted + self.updated


def collapse_samples(samples: Iterable[NormalizedSample]) -> dict[date, NormalizedSample]:
    """Fold duplicate samples for one day: max steps, last non-null weight."""
    merged: dict[date, NormalizedSample] = {}
    for sample in samples:
        prior = merged.get(sample.date)
        if prior is None:
            merged[sample.date] = NormalizedSample(
                date=sample.date,
                steps=sample.steps,
                weight_lbs=sample.weight_lbs,
                source=sample.source,
            )
            continue
        prior.steps = max(prior.steps, sample.steps)
        if sample.weight_lbs is not None:
            prior.weight_lbs = sample.weight_lbs
        prior.source = sample.source
    return merged


def merge_entry(
    existing: DailyHistoryEntry, sample: NormalizedSample
) -> DailyHistoryEntry | None:
    """Return the updated entry, or None when nothing would change."""
    steps = existing.steps
    if sample.steps > 0 and sample.steps > existing.steps:
        steps = sample.steps
    weight = existing.weight_lbs
    if sample.weight_lbs is not None:
        weight = sample.weight_lbs

    if steps == existing.steps and weight == existing.weight_lbs:
        return None
    return DailyHistoryEntry(
        user_id=existing.user_id,
        date=existing.date,
        steps=steps,
        weight_lbs=weight,
        source=sample.source,
    )


class Reconciler:
    """Idempotent upsert of samples into a HistoryStore."""

    def __init__(
        self, store: HistoryStore, now: Callable[[], datetime] = utc_now
    ) -> None:
        self._store = store
        self._now = now

    async def upsert(
        self,
        user_id: str,
        samples: Iterable[NormalizedSample],
        eligible_dates: Iterable[date],
        today: date,
    ) -> ReconcileResult:
        """Write every sample whose day is eligible or today.

        Args:
            user_id:        Owner of the history.
            samples:        Normalized samples, possibly with duplicate days.
            eligible_dates: Days the gap plan allows to be overwritten.
            today:          Current UTC day, always writable.

        Raises:
            StoreError: If the store fails; writes already made stand.
        """
        result = ReconcileResult()
        allowed = set(eligible_dates) | {today}
        merged = collapse_samples(samples)
        if not merged:
            return result

        lo, hi = min(merged), max(merged)
        stored = {e.date: e for e in await self._store.get_history(user_id, lo, hi)}

        for day in sorted(merged):
            sample = merged[day]
            if day not in allowed:
                logger.debug("user %s %s: not eligible, skipped", user_id, day)
                result.skipped += 1
                continue

            existing = stored.get(day)
            if existing is None:
                if sample.steps == 0 and sample.weight_lbs is None and day != today:
                    result.skipped += 1
                    continue
                entry = DailyHistoryEntry(
                    user_id=user_id,
                    date=day,
                    steps=max(sample.steps, 0),
                    weight_lbs=sample.weight_lbs,
                    source=sample.source,
                    updated_at=self._now(),
                )
                await self._store.upsert_history(entry)
                result.inserted += 1
                result.dates_written.append(day)
                logger.debug("user %s %s: inserted steps=%d", user_id, day, entry.steps)
                continue

            updated = merge_entry(existing, sample)
            if updated is None:
                result.skipped += 1
                continue
            updated.updated_at = self._now()
            await self._store.upsert_history(updated)
            result.updated += 1
            result.dates_written.append(day)
            logger.debug(
                "user %s %s: steps %d→%d weight %s→%s",
                user_id, day, existing.steps, updated.steps,
                existing.weight_lbs, updated.weight_lbs,
            )

        if result.records_saved:
            logger.info(
                "Reconciled user %s: %d inserted, %d updated, %d skipped",
                user_id, result.inserted, result.updated, result.skipped,
            )
        return result
