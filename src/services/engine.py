"""Construction of the long-lived engine objects shared by all requests.

``build_services`` turns application settings plus the engine YAML config
into one ``EngineServices`` bundle.  The FastAPI lifespan stores it on
``app.state.services``; route handlers reach it through
``src.dependencies.get_services``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import Settings
from src.fitsync.adapters import get_adapter
from src.fitsync.adapters.google_fit import GoogleFitAdapter
from src.fitsync.base import FitnessProviderAdapter
from src.fitsync.config_loader import SyncConfig
from src.fitsync.realtime import InMemoryBroadcaster
from src.fitsync.scoring import ScoringEngine
from src.fitsync.stores import (
    CredentialStorage,
    HistoryStore,
    InMemoryCredentialStorage,
    InMemoryHistoryStore,
)
from src.fitsync.sync.scheduler import SyncScheduler
from src.services.postgres import PostgresCredentialStorage, PostgresHistoryStore

logger = logging.getLogger("fitsync.services")


@dataclass
class EngineServices:
    adapter: FitnessProviderAdapter
    store: HistoryStore
    credential_storage: CredentialStorage
    broadcaster: InMemoryBroadcaster
    scoring: ScoringEngine
    scheduler: SyncScheduler
    storage_backend: str = "memory"


def build_adapter(settings: Settings, config: SyncConfig) -> FitnessProviderAdapter:
    """Instantiate the configured provider adapter.

    Raises:
        KeyError: If ``settings.provider`` is not a registered source.
    """
    adapter_cls = get_adapter(settings.provider)
    provider = config.provider
    kwargs = {
        "timeout_seconds": provider.timeout_seconds,
        "api_base": provider.api_base(settings.provider),
        "token_url": provider.token_url(settings.provider),
    }
    if adapter_cls is GoogleFitAdapter:
        return GoogleFitAdapter(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            bucket_duration_ms=provider.bucket_duration_ms,
            kg_threshold=provider.kg_heuristic_threshold,
            **kwargs,
        )
    return adapter_cls(
        client_id=settings.fitbit_client_id,
        client_secret=settings.fitbit_client_secret,
        **kwargs,
    )


def build_services(
    settings: Settings,
    config: SyncConfig,
    store: HistoryStore | None = None,
    credential_storage: CredentialStorage | None = None,
    adapter: FitnessProviderAdapter | None = None,
) -> EngineServices:
    """Wire stores, adapter, scoring and scheduler together.

    Explicit ``store`` / ``credential_storage`` / ``adapter`` arguments win
    over what the settings select.
    """
    backend = settings.storage_backend
    if store is None or credential_storage is None:
        if backend == "postgres":
            store = store or PostgresHistoryStore()
            credential_storage = credential_storage or PostgresCredentialStorage()
        else:
            store = store or InMemoryHistoryStore()
            credential_storage = credential_storage or InMemoryCredentialStorage()
    else:
        backend = "custom"

    adapter = adapter or build_adapter(settings, config)
    broadcaster = InMemoryBroadcaster()
    scoring = ScoringEngine(
        store,
        default_step_goal=config.scoring.default_step_goal,
        weight_loss_thresholds=config.scoring.weight_loss_thresholds,
    )
    scheduler = SyncScheduler(
        adapter,
        store,
        credential_storage,
        publisher=broadcaster,
        scoring=scoring,
        lookback_days=config.backfill.lookback_days,
        expiry_buffer=config.credentials.expiry_buffer,
        rate_limit_cooldown=config.credentials.rate_limit_cooldown,
        interval_seconds=config.scheduler.interval_seconds,
        min_sync_interval=config.scheduler.min_sync_interval,
    )
    logger.info(
        "Engine services ready: provider=%s storage=%s", adapter.SOURCE_ID, backend
    )
    return EngineServices(
        adapter=adapter,
        store=store,
        credential_storage=credential_storage,
        broadcaster=broadcaster,
        scoring=scoring,
        scheduler=scheduler,
        storage_backend=backend,
    )
