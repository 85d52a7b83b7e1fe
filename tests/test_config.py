"""Tests for tracker configuration."""

from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from learntime.config import TrackerConfig

KARACHI = ZoneInfo("Asia/Karachi")


class TestTrackerConfig:
    """Tests for settings loading."""

    def test_defaults(self):
        config = TrackerConfig()
        assert config.reference_timezone == "Asia/Karachi"
        assert config.idle_threshold_seconds == 300
        assert config.flush_interval_seconds == 120
        assert config.refresh_interval_seconds == 300
        assert config.max_daily_minutes == 1440
        assert config.tz == KARACHI

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LT_IDLE_THRESHOLD_SECONDS", "600")
        assert TrackerConfig().idle_threshold_seconds == 600

    def test_from_env_ignores_none(self, monkeypatch):
        monkeypatch.setenv("LT_REFERENCE_TIMEZONE", "UTC")
        assert TrackerConfig.from_env(reference_timezone=None).reference_timezone == "UTC"
        assert TrackerConfig.from_env(reference_timezone="Europe/Berlin").reference_timezone == "Europe/Berlin"

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            TrackerConfig(reference_timezone="Not/AZone")

    def test_non_positive_interval(self):
        with pytest.raises(ValidationError):
            TrackerConfig(tick_interval_seconds=0)
