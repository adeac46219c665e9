"""Fitness provider adapters for FitSync.

Each adapter implements the FitnessProviderAdapter ABC and handles:
- Silent OAuth2 token refresh
- One daily-bucketed query for steps and body weight
- Normalizing provider JSON into NormalizedSample records

Available adapters:
    GoogleFitAdapter — Google Fit REST API (dataset:aggregate)
    FitbitAdapter    — Fitbit Web API (steps + weight time series)
"""

from __future__ import annotations

from src.fitsync.adapters.fitbit import FitbitAdapter
from src.fitsync.adapters.google_fit import GoogleFitAdapter
from src.fitsync.base import FitnessProviderAdapter

__all__ = [
    "GoogleFitAdapter",
    "FitbitAdapter",
    "ADAPTER_REGISTRY",
    "get_adapter",
]

# Registry: source_id → adapter class
ADAPTER_REGISTRY: dict[str, type[FitnessProviderAdapter]] = {
    "google_fit": GoogleFitAdapter,
    "fitbit": FitbitAdapter,
}


def get_adapter(source_id: str) -> type[FitnessProviderAdapter]:
    """Return the adapter class for a given source slug.

    Args:
        source_id: 'google_fit' or 'fitbit'.

    Returns:
        The adapter class (not an instance).

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for source '{source_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[source_id]
