"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Engine tuning (buffers, windows, intervals) lives in
    ``src/fitsync/sync_config.yaml``; this holds deployment settings.
    """

    # --- App ---
    app_name: str = "FitSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: str = "memory"  # memory | postgres
    database_url: str = ""  # postgres connection string for asyncpg
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Provider ---
    provider: str = "google_fit"  # google_fit | fitbit
    google_client_id: str = ""
    google_client_secret: str = ""  # server-side only
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""  # server-side only

    # --- Scheduler ---
    scheduler_enabled: bool = False

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
