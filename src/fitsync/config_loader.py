"""Load, validate, and hot-reload the FitSync engine configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an operator edit; no restart required.

Usage::

    from src.fitsync.config_loader import get_sync_config

    config = get_sync_config()
    buffer = config.credentials.expiry_buffer          # timedelta(minutes=30)
    base = config.provider.api_base("fitbit")          # "https://api.fitbit.com"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("fitsync.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class CredentialsConfig:
    """Access-token lifecycle settings."""

    expiry_buffer_minutes: int = 30
    rate_limit_cooldown_minutes: int = 5

    @property
    def expiry_buffer(self) -> timedelta:
        return timedelta(minutes=self.expiry_buffer_minutes)

    @property
    def rate_limit_cooldown(self) -> timedelta:
        return timedelta(minutes=self.rate_limit_cooldown_minutes)


@dataclass
class BackfillConfig:
    """Rolling history window settings."""

    lookback_days: int = 30


@dataclass
class ProviderConfig:
    """Provider HTTP settings shared by every adapter."""

    timeout_seconds: float = 10.0
    bucket_duration_ms: int = 86_400_000
    kg_heuristic_threshold: float = 150.0
    api_bases: dict[str, str] = field(default_factory=dict)
    token_urls: dict[str, str] = field(default_factory=dict)

    def api_base(self, source: str) -> str | None:
        return self.api_bases.get(source)

    def token_url(self, source: str) -> str | None:
        return self.token_urls.get(source)


@dataclass
class ScoringConfig:
    """Challenge scoring defaults."""

    default_step_goal: int = 10000
    weight_loss_thresholds: list[dict] | None = None


@dataclass
class SchedulerConfig:
    """Periodic sync loop settings."""

    enabled: bool = True
    interval_seconds: int = 300
    min_sync_interval_seconds: int = 120

    @property
    def min_sync_interval(self) -> timedelta:
        return timedelta(seconds=self.min_sync_interval_seconds)


@dataclass
class SyncConfig:
    """Complete, validated engine configuration.

    This is the single in-memory representation of sync_config.yaml.

    Attributes:
        version:     Config schema version string.
        credentials: Token buffer and rate-limit cool-down.
        backfill:    Rolling window size.
        provider:    Timeouts, bucket size, unit heuristic, endpoints.
        scoring:     Default step goal and optional weight-loss thresholds.
        scheduler:   Periodic loop interval and per-user minimum interval.
    """

    version: str
    credentials: CredentialsConfig
    backfill: BackfillConfig
    provider: ProviderConfig
    scoring: ScoringConfig
    scheduler: SchedulerConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_thresholds(raw: Any, errors: list[str]) -> list[dict] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        errors.append("scoring.weight_loss_thresholds must be a list")
        return None
    thresholds: list[dict] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or "min_pct" not in item or "points" not in item:
            errors.append(
                f"scoring.weight_loss_thresholds[{i}] needs 'min_pct' and 'points'"
            )
            continue
        try:
            thresholds.append(
                {"min_pct": float(item["min_pct"]), "points": int(item["points"])}
            )
        except (TypeError, ValueError):
            errors.append(f"scoring.weight_loss_thresholds[{i}] has non-numeric values")
    return thresholds


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected before raising so an operator sees all of them
    at once.

    Raises:
        ConfigValidationError: If any field is invalid.
    """
    errors: list[str] = []

    def _positive(section: dict, key: str, name: str, default: Any, cast: type) -> Any:
        value = section.get(key, default)
        try:
            value = cast(value)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {value!r}")
            return default
        if value <= 0:
            errors.append(f"{name}.{key} must be > 0, got {value}")
        return value

    def _section(key: str) -> dict:
        value = raw.get(key) or {}
        if not isinstance(value, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return value

    version = str(raw.get("version", "1.0"))

    # ── Credentials ──
    cr_raw = _section("credentials")
    credentials = CredentialsConfig(
        expiry_buffer_minutes=_positive(cr_raw, "expiry_buffer_minutes", "credentials", 30, int),
        rate_limit_cooldown_minutes=_positive(
            cr_raw, "rate_limit_cooldown_minutes", "credentials", 5, int
        ),
    )

    # ── Backfill ──
    bf_raw = _section("backfill")
    backfill = BackfillConfig(
        lookback_days=_positive(bf_raw, "lookback_days", "backfill", 30, int),
    )

    # ── Provider ──
    pr_raw = _section("provider")
    api_bases: dict[str, str] = {}
    token_urls: dict[str, str] = {}
    for source, cfg in (pr_raw.get("sources") or {}).items():
        if not isinstance(cfg, dict):
            errors.append(f"provider.sources.{source} must be a mapping")
            continue
        if cfg.get("api_base"):
            api_bases[source] = str(cfg["api_base"]).rstrip("/")
        if cfg.get("token_url"):
            token_urls[source] = str(cfg["token_url"])
    provider = ProviderConfig(
        timeout_seconds=_positive(pr_raw, "timeout_seconds", "provider", 10.0, float),
        bucket_duration_ms=_positive(pr_raw, "bucket_duration_ms", "provider", 86_400_000, int),
        kg_heuristic_threshold=_positive(
            pr_raw, "kg_heuristic_threshold", "provider", 150.0, float
        ),
        api_bases=api_bases,
        token_urls=token_urls,
    )
    if provider.bucket_duration_ms != 86_400_000:
        logger.warning(
            "provider.bucket_duration_ms=%d: buckets no longer map to calendar days",
            provider.bucket_duration_ms,
        )

    # ── Scoring ──
    sc_raw = _section("scoring")
    scoring = ScoringConfig(
        default_step_goal=_positive(sc_raw, "default_step_goal", "scoring", 10000, int),
        weight_loss_thresholds=_validate_thresholds(
            sc_raw.get("weight_loss_thresholds"), errors
        ),
    )

    # ── Scheduler ──
    sh_raw = _section("scheduler")
    scheduler = SchedulerConfig(
        enabled=bool(sh_raw.get("enabled", True)),
        interval_seconds=_positive(sh_raw, "interval_seconds", "scheduler", 300, int),
        min_sync_interval_seconds=_positive(
            sh_raw, "min_sync_interval_seconds", "scheduler", 120, int
        ),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        credentials=credentials,
        backfill=backfill,
        provider=provider,
        scoring=scoring,
        scheduler=scheduler,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
