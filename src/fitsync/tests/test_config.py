"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from datetime import timedelta
from pathlib import Path

import pytest

from src.fitsync.config_loader import (
    ConfigValidationError,
    SyncConfig,
    _validate_and_build,
    load_sync_config,
    reload_sync_config,
)


class TestConfigLoading:
    """Tests for loading the bundled sync_config.yaml."""

    def test_load_default_config(self, sync_config: SyncConfig) -> None:
        assert sync_config.version == "1.0"
        assert sync_config.credentials.expiry_buffer == timedelta(minutes=30)
        assert sync_config.credentials.rate_limit_cooldown == timedelta(minutes=5)
        assert sync_config.backfill.lookback_days == 30
        assert sync_config.scheduler.min_sync_interval == timedelta(minutes=2)

    def test_provider_endpoints(self, sync_config: SyncConfig) -> None:
        assert sync_config.provider.api_base("fitbit") == "https://api.fitbit.com/1/user/-"
        assert sync_config.provider.token_url("google_fit") == "https://oauth2.googleapis.com/token"
        assert sync_config.provider.api_base("strava") is None

    def test_scoring_defaults(self, sync_config: SyncConfig) -> None:
        assert sync_config.scoring.default_step_goal == 10000
        assert sync_config.scoring.weight_loss_thresholds is None


class TestValidation:
    def test_empty_document_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.provider.kg_heuristic_threshold == 150.0
        assert config.scheduler.interval_seconds == 300

    def test_all_errors_reported_together(self) -> None:
        raw = {
            "credentials": {"expiry_buffer_minutes": 0},
            "backfill": {"lookback_days": "a month"},
            "scheduler": {"interval_seconds": -1},
        }
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "3 validation error(s)" in message
        assert "expiry_buffer_minutes" in message
        assert "lookback_days" in message
        assert "interval_seconds" in message

    def test_thresholds_validated(self) -> None:
        config = _validate_and_build(
            {"scoring": {"weight_loss_thresholds": [{"min_pct": "5", "points": 3}]}}
        )
        assert config.scoring.weight_loss_thresholds == [{"min_pct": 5.0, "points": 3}]

        with pytest.raises(ConfigValidationError, match="min_pct"):
            _validate_and_build({"scoring": {"weight_loss_thresholds": [{"points": 3}]}})

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="'provider' must be a mapping"):
            _validate_and_build({"provider": ["nope"]})


class TestReload:
    def test_reload_from_custom_path(self, tmp_path: Path) -> None:
        path = tmp_path / "sync_config.yaml"
        path.write_text(textwrap.dedent("""
            version: "2.0"
            backfill:
              lookback_days: 14
        """))
        config = reload_sync_config(path)
        assert config.version == "2.0"
        assert config.backfill.lookback_days == 14
        reload_sync_config()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("credentials: [unclosed")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_sync_config(path)
