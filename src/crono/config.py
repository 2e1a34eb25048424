"""Engine settings loaded from the environment (``CRONO_*``) or a ``.env`` file."""

from datetime import timedelta
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scheduler tunables. Durations accept seconds or ISO 8601 strings."""

    model_config = SettingsConfigDict(
        env_prefix="CRONO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Executors
    guard_timeout: timedelta = Field(timedelta(hours=24), description="Hard ceiling on a single command run")
    output_limit: int = Field(64 * 1024, ge=0, description="Bytes kept from the end of a command's stdout and stderr")

    # Engine
    replan_tick: timedelta = Field(timedelta(seconds=1), description="Offset added to a fired instant before re-planning")
    replan_fallback: timedelta = Field(timedelta(minutes=1), description="Delay used when re-planning a job fails")
    max_pending: int = Field(1, ge=0, description="Pending occurrences kept per job under the 'queue' overlap policy")
    history_size: int = Field(20, ge=0, description="Finished invocations remembered per job")

    # Runner
    default_backoff_min: timedelta = timedelta(seconds=1)
    default_backoff_max: timedelta = timedelta(seconds=30)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Optional[str] = None


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
