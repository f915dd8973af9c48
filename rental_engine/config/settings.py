from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def find_env_file() -> str:
    env_file = ".env" if Path("/.dockerenv").exists() else ".env.local"

    current_path = Path.cwd()

    for path in [current_path] + list(current_path.parents):
        env_path = path / env_file
        if env_path.exists():
            return str(env_path)

    return env_file


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "postgresql+psycopg2://app:app@db:5432/rentals"
    # e.g. "REPEATABLE READ" or "SERIALIZABLE" on PostgreSQL; None keeps the driver default
    isolation_level: Optional[str] = None
    auto_create_schema: bool = True

    # Reservation retries
    reserve_max_attempts: int = 3
    reserve_backoff_base_sec: float = 0.05
    reserve_backoff_max_sec: float = 1.0

    # Circuit Breaker settings
    cb_store_fail_max: int = 5  # Max failures for store operations
    cb_store_reset_timeout: int = 30  # Reset timeout in seconds

    # Catalog availability cache (advisory only)
    catalog_cache_ttl_sec: int = 30
    catalog_cache_size: int = 256

    # Change propagation
    change_feed_buffer: int = 1000
    change_router_reconnect_sec: float = 1.0

    # Subscription rollover worker
    rollover_tick_sec: int = 3600
    rollover_metrics_port: int = 8001

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Metrics
    metrics_enabled: bool = True
