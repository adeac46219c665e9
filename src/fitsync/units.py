"""Mass unit conversion shared by the sync engine and manual weigh-ins.

Providers report body weight in kilograms; FitSync stores and displays pounds
with two-decimal precision (no whole-number rounding).
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

KG_TO_LBS = 2.20462

# Provider values below this are assumed to be kilograms.
DEFAULT_KG_THRESHOLD = 150.0


def _is_positive_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def round_lbs(value: float) -> float:
    """Round to 2 decimals with ties away from zero (182.345 -> 182.35)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def kg_to_lbs(kg: object) -> float | None:
    """Convert kilograms to pounds, rounded to 2 decimals.

    Args:
        kg: Weight in kilograms.

    Returns:
        Weight in pounds, or None when ``kg`` is not a finite positive number.
    """
    if not _is_positive_number(kg):
        return None
    return round_lbs(kg * KG_TO_LBS)  # type: ignore[operator]


def normalize_provider_weight(
    value: object, threshold: float = DEFAULT_KG_THRESHOLD
) -> float | None:
    """Disambiguate a provider weight of unknown unit and return pounds.

    Values below ``threshold`` are treated as kilograms and converted; values
    at or above it are assumed to already be pounds.  This misclassifies
    anyone under 150 lbs whose provider reports pounds, but stored history
    depends on it, so it must not change without a data migration.

    Args:
        value:     Raw provider weight.
        threshold: Magnitude below which the value is taken as kilograms.

    Returns:
        Weight in pounds (2 decimals) or None for unusable input.
    """
    if not _is_positive_number(value):
        return None
    if value < threshold:  # type: ignore[operator]
        return kg_to_lbs(value)
    return round_lbs(float(value))  # type: ignore[arg-type]


def normalize_manual_weight(value: object, unit: str = "lbs") -> float | None:
    """Normalize a manually entered weight to pounds.

    Args:
        value: The number the user typed.
        unit:  ``"kg"`` or ``"lbs"``.

    Returns:
        Weight in pounds, or None for non-positive / non-finite input.

    Raises:
        ValueError: If ``unit`` is not recognised.
    """
    unit_key = unit.strip().lower()
    if unit_key in ("kg", "kgs", "kilograms"):
        return kg_to_lbs(value)
    if unit_key in ("lb", "lbs", "pounds"):
        if not _is_positive_number(value):
            return None
        return round_lbs(float(value))  # type: ignore[arg-type]
    raise ValueError(f"Unknown weight unit: {unit!r}")
