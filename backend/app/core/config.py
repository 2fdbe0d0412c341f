"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Cadence Program Sync"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://cadence@localhost:5432/cadence"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "cadence-program-sync"

    # Scheduler worker
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    program_sync_interval_hours: int = 6
    jobs_run_on_startup: bool = False
    cron_secret: str | None = None

    # Reconciliation run
    sync_batch_size: int = 50
    sync_batch_pause_seconds: float = 0.5
    sync_max_workers: int = 8
    write_batch_limit: int = 500

    # Fallbacks when organization or user settings are missing
    default_focus_slots: int = 3
    default_timezone: str = "UTC"
    max_module_habits: int = 3
    coach_sync_horizon_days: int = 7


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
