"""Decide which days of the rolling history window a sync may overwrite.

Pure functions only.  The provider is always queried for the full window;
the plan restricts which days the reconciler is allowed to write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from src.fitsync.base import DailyHistoryEntry, day_start

logger = logging.getLogger("fitsync.gap_planner")

DEFAULT_LOOKBACK_DAYS = 30


@dataclass
class GapPlan:
    """Result of comparing stored history against the lookback window.

    Attributes:
        fetch_start:       UTC midnight of the first day in the window.
        fetch_end:         UTC midnight of today (exclusive).
        missing:           Days with no entry or ``steps == 0``.
        needs_weight_only: Days with steps but no recorded weight.
    """

    fetch_start: datetime
    fetch_end: datetime
    missing: list[date] = field(default_factory=list)
    needs_weight_only: list[date] = field(default_factory=list)

    @property
    def eligible_dates(self) -> set[date]:
        return set(self.missing) | set(self.needs_weight_only)

    @property
    def has_gaps(self) -> bool:
        return bool(self.missing or self.needs_weight_only)


def window_days(today: date, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> list[date]:
    """Days ``[today - lookback_days, today)`` in ascending order."""
    return [today - timedelta(days=offset) for offset in range(lookback_days, 0, -1)]


def plan_gaps(
    existing_history: Iterable[DailyHistoryEntry],
    today: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> GapPlan:
    """Build the GapPlan for one user.

    Zero steps are treated as missing data, so a genuinely sedentary day is
    re-queried every cycle until a non-zero count arrives.

    Args:
        existing_history: Stored entries; those outside the window are ignored.
        today:            Current UTC calendar day (never part of the plan).
        lookback_days:    Window size.
    """
    days = window_days(today, lookback_days)
    first = days[0] if days else today
    by_date = {e.date: e for e in existing_history if first <= e.date < today}

    missing: list[date] = []
    needs_weight: list[date] = []
    for day in days:
        entry = by_date.get(day)
        if entry is None or entry.steps == 0:
            missing.append(day)
        elif entry.weight_lbs is None:
            needs_weight.append(day)

    plan = GapPlan(
        fetch_start=day_start(first),
        fetch_end=day_start(today),
        missing=missing,
        needs_weight_only=needs_weight,
    )
    logger.debug(
        "Gap plan %s..%s: %d missing, %d need weight",
        first, today, len(missing), len(needs_weight),
    )
    return plan
