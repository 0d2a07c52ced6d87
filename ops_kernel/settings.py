"""
Process settings loaded from environment variables.
Uses pydantic-settings; every variable is prefixed with OPS_.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with defaults suitable for local development."""

    model_config = SettingsConfigDict(env_prefix="OPS_", env_file=".env", extra="ignore")

    # Durable key-value store (sent ledger, audio activation flags)
    ledger_db_path: str = "ops_kernel.db"

    # Identifies this screen/device for per-device flags
    device_id: str = "default"

    # Cadences
    poll_interval_seconds: float = 3.0
    tone_interval_seconds: float = 3.0

    # Logging
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
