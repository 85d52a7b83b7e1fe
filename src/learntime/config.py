"""Tracker configuration."""

from __future__ import annotations

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path.home() / ".local" / "share" / "lt"
DEFAULT_DB_PATH = DATA_DIR / "minutes.db"
DEFAULT_CACHE_PATH = DATA_DIR / "cache.db"

# One day's worth of minutes
MAX_DAILY_MINUTES = 1440


class TrackerConfig(BaseSettings):
    """Knobs for the session-time tracker.

    Every field can be overridden with an ``LT_``-prefixed environment
    variable, e.g. ``LT_IDLE_THRESHOLD_SECONDS=600``.
    """

    model_config = SettingsConfigDict(env_prefix="LT_", frozen=True, extra="ignore")

    # All users share this timezone for "today" and day boundaries.
    reference_timezone: str = "Asia/Karachi"
    idle_threshold_seconds: int = Field(default=300, gt=0)
    tick_interval_seconds: int = Field(default=1, gt=0)
    flush_interval_seconds: int = Field(default=120, gt=0)
    refresh_interval_seconds: int = Field(default=300, gt=0)
    max_daily_minutes: int = Field(default=MAX_DAILY_MINUTES, gt=0)
    request_timeout_seconds: float = Field(default=30, gt=0)

    @field_validator("reference_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @property
    def tz(self) -> ZoneInfo:
        """The reference timezone as a tzinfo."""
        return ZoneInfo(self.reference_timezone)

    @classmethod
    def from_env(cls, **overrides: object) -> TrackerConfig:
        """Build a config from ``LT_*`` environment variables.

        Keyword overrides win over the environment; ``None`` values are ignored
        so CLI options left unset fall through.
        """
        return cls(**{k: v for k, v in overrides.items() if v is not None})
