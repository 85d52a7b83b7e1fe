"""Tests for the lt CLI."""

import json
from datetime import date
from unittest.mock import patch

import requests
from click.testing import CliRunner

from learntime.cli import format_minutes, format_session, main, make_progress_bar
from learntime.db import MinuteStore
from learntime.storage import LocalCache, SqliteKeyValueStore


def invoke(tmp_path, *args: str, user: str | None = "alice", input: str | None = None):
    """Run the CLI against stores under tmp_path."""
    base = ["--db", str(tmp_path / "minutes.db"), "--cache", str(tmp_path / "cache.db")]
    if user:
        base += ["--user", user]
    return CliRunner().invoke(main, base + list(args), input=input)


def buffer_minutes(tmp_path, day: date, minutes: int) -> None:
    with SqliteKeyValueStore.open(tmp_path / "cache.db") as kv:
        LocalCache(kv).buffer_failed(day, minutes)


def cached(tmp_path, day: date) -> int:
    with SqliteKeyValueStore.open(tmp_path / "cache.db") as kv:
        return LocalCache(kv).cached_minutes(day)


def stored(tmp_path, day: date, user: str = "alice") -> int:
    with MinuteStore.open(tmp_path / "minutes.db") as store:
        return store.get_minutes_for_date(user, day)


def test_cli_help() -> None:
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "Learning-time tracker CLI" in result.output


class TestFormatting:
    """Tests for duration formatting."""

    def test_format_minutes(self):
        assert format_minutes(0) == "0m"
        assert format_minutes(45) == "45m"
        assert format_minutes(120) == "2h"
        assert format_minutes(65) == "1h 05m"
        assert format_minutes(5000) == "24h"

    def test_format_session(self):
        assert format_session(1) == "1 second"
        assert format_session(42) == "42 seconds"
        assert format_session(125) == "2 min 5 sec"

    def test_progress_bar(self):
        assert make_progress_bar(0, 10, width=4) == "░░░░"
        assert make_progress_bar(10, 10, width=4) == "████"
        assert make_progress_bar(1, 100, width=4) == "█░░░"


class TestRecordCommand:
    """Tests for lt record."""

    def test_record_to_store(self, tmp_path):
        result = invoke(tmp_path, "record", "30", "--date", "2024-05-01")

        assert result.exit_code == 0, result.output
        assert "Recorded 30m for 2024-05-01 (total 30m)" in result.output
        assert stored(tmp_path, date(2024, 5, 1)) == 30
        assert cached(tmp_path, date(2024, 5, 1)) == 30

    def test_record_is_additive(self, tmp_path):
        invoke(tmp_path, "record", "30", "--date", "2024-05-01")
        result = invoke(tmp_path, "record", "45", "--date", "2024-05-01")
        assert "(total 1h 15m)" in result.output

    def test_not_logged_in_records_locally(self, tmp_path):
        result = invoke(tmp_path, "record", "10", "--date", "2024-05-01", user=None)

        assert result.exit_code == 0
        assert "Not logged in" in result.output
        assert cached(tmp_path, date(2024, 5, 1)) == 10

    def test_backend_down_buffers(self, tmp_path):
        with patch(
            "requests.Session.request",
            side_effect=requests.exceptions.ConnectionError("down"),
        ):
            result = invoke(
                tmp_path,
                "--api-url", "https://example.test",
                "--token", "secret",
                "record", "7", "--date", "2024-05-01",
            )

        assert result.exit_code == 1
        assert "buffered for retry (7m pending)" in result.output

    def test_invalid_date(self, tmp_path):
        result = invoke(tmp_path, "record", "5", "--date", "2024-13-01")
        assert result.exit_code == 1
        assert "Invalid date format" in result.output

    def test_minutes_out_of_range(self, tmp_path):
        result = invoke(tmp_path, "record", "0")
        assert result.exit_code == 2


class TestWeekCommand:
    """Tests for lt week."""

    def test_week_json(self, tmp_path):
        invoke(tmp_path, "record", "30", "--date", "2024-05-01")
        invoke(tmp_path, "record", "15", "--date", "2024-04-28")

        result = invoke(tmp_path, "week", "--date", "2024-05-01", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["week_start"] == "2024-04-28"
        assert data["week_end"] == "2024-05-04"
        assert data["total_minutes"] == 45
        assert data["is_current_week"] is False
        assert data["can_go_next"] is True
        assert [d["label"] for d in data["days"]] == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
        assert data["days"][3]["date"] == "2024-05-01"
        assert data["days"][3]["minutes"] == 30

    def test_week_human(self, tmp_path):
        invoke(tmp_path, "record", "75", "--date", "2024-05-01")

        result = invoke(tmp_path, "week", "--date", "2024-05-03")

        assert result.exit_code == 0, result.output
        assert "Practice: Apr 28 - May 4, 2024" in result.output
        assert "Total: 1h 15m" in result.output
        assert "Wed May  1" in result.output

    def test_week_uses_cache_when_logged_out(self, tmp_path):
        invoke(tmp_path, "record", "20", "--date", "2024-04-29", user=None)

        result = invoke(tmp_path, "week", "--date", "2024-04-29", "--json", user=None)

        data = json.loads(result.output)
        assert data["days"][1]["minutes"] == 20

    def test_future_week_rejected(self, tmp_path):
        result = invoke(tmp_path, "week", "--date", "2999-01-01")
        assert result.exit_code == 1
        assert "has not started yet" in result.output

    def test_invalid_timezone(self, tmp_path):
        result = invoke(tmp_path, "--tz", "Not/AZone", "week")
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestRetryCommand:
    """Tests for lt retry."""

    def test_nothing_to_retry(self, tmp_path):
        result = invoke(tmp_path, "retry")
        assert result.exit_code == 0
        assert "Nothing to retry" in result.output

    def test_retry_delivers_buffer(self, tmp_path):
        buffer_minutes(tmp_path, date(2024, 4, 30), 5)

        result = invoke(tmp_path, "retry")

        assert result.exit_code == 0, result.output
        assert "Retried 5m (0m still pending)" in result.output
        assert stored(tmp_path, date(2024, 4, 30)) == 5

    def test_retry_keeps_buffer_when_down(self, tmp_path):
        buffer_minutes(tmp_path, date(2024, 4, 30), 5)

        with patch(
            "requests.Session.request",
            side_effect=requests.exceptions.ConnectionError("down"),
        ):
            result = invoke(
                tmp_path, "--api-url", "https://example.test", "--token", "secret", "retry"
            )

        assert result.exit_code == 1
        assert "Retried 0m (5m still pending)" in result.output

    def test_retry_requires_login(self, tmp_path):
        buffer_minutes(tmp_path, date(2024, 4, 30), 5)
        result = invoke(tmp_path, "retry", user=None)
        assert result.exit_code == 1
        assert "Not logged in" in result.output


class TestStatusCommand:
    """Tests for lt status."""

    def test_status_logged_out(self, tmp_path):
        buffer_minutes(tmp_path, date(2024, 4, 30), 5)

        result = invoke(tmp_path, "status", user=None)

        assert result.exit_code == 0
        assert "Asia/Karachi" in result.output
        assert "[cache]" in result.output
        assert "Logged in: no" in result.output
        assert "Pending retry: 5m" in result.output
        assert "2024-04-30: 5m" in result.output

    def test_status_logged_in(self, tmp_path):
        result = invoke(tmp_path, "status")
        assert "[store]" in result.output
        assert "Logged in: yes" in result.output
        assert "Pending retry: none" in result.output


class TestTrackCommand:
    """Tests for lt track."""

    def test_track_zero_seconds(self, tmp_path):
        result = invoke(tmp_path, "track", "--seconds", "0", input="")

        assert result.exit_code == 0, result.output
        assert "Session:" in result.output
        assert "Today:" in result.output

    def test_track_logged_out_warns(self, tmp_path):
        result = invoke(tmp_path, "track", "--seconds", "0", input="", user=None)

        assert result.exit_code == 0, result.output
        assert "Not logged in: minutes are kept in the local cache only" in result.output
