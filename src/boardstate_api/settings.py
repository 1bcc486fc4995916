"""Settings for the board state API."""

from typing import Optional

from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the board state API.

    [pydantic.BaseSettings](https://docs.pydantic.dev/latest/concepts/pydantic_settings/) reads
    configuration values from environment variables and, for local development, from a .env file.

    Environment variable names are treated case-insensitively, but the canonical
    names used in this project are lowercase (state_db_connection_string, ...).
    """

    service_name: str = "Board State API"
    """Service name reported by the health endpoints."""

    # State database
    state_db_connection_string: Optional[str] = None
    """PostgreSQL connection string for the board state database. State routes answer 503 without it."""

    state_db_pool_min_size: int = 2
    """Minimum number of pooled connections."""

    state_db_pool_max_size: int = 10
    """Maximum number of pooled connections."""

    state_db_command_timeout: float = 60.0
    """Query timeout in seconds."""

    # Read-through cache
    enable_state_cache: bool = True
    """Serve document reads from the in-process cache when possible."""

    state_cache_ttl_seconds: int = 60
    """Lifetime of a cached document. Writes invalidate the cache regardless of TTL."""

    # Backups
    enable_backup_scheduler: bool = True
    """Run the hourly/daily snapshot loops. The startup backup is taken either way."""

    backup_hourly_interval_minutes: int = 60
    """Minutes between 'hourly' snapshots (0 disables the cadence)."""

    backup_daily_interval_hours: int = 24
    """Hours between 'daily' snapshots (0 disables the cadence)."""

    backup_source: str = "scheduler"
    """Value recorded in the backup 'source' column for scheduled snapshots."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",  # Load from .env file if it exists (local development)
        env_file_encoding="utf-8",
        extra="ignore",
        validate_default=True,
    )
