"""SQLite store of Daily Minute Records."""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
from pathlib import Path

from pydantic import BaseModel, field_validator

from learntime.config import MAX_DAILY_MINUTES

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _clamp(minutes: int) -> int:
    return max(0, min(minutes, MAX_DAILY_MINUTES))


class DailyMinutes(BaseModel):
    """Practised minutes for one calendar date."""

    date: dt.date
    minutes: int = 0

    @field_validator("minutes")
    @classmethod
    def _clamp_minutes(cls, value: int) -> int:
        return _clamp(value)


SCHEMA = """
CREATE TABLE IF NOT EXISTS daily_minutes (
    user_id TEXT NOT NULL,
    date TEXT NOT NULL,
    minutes INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, date)
);

CREATE INDEX IF NOT EXISTS idx_daily_minutes_date ON daily_minutes(date);
"""


class MinuteStore:
    """SQLite-backed Daily Minute Record store.

    Records are keyed by ``(user_id, date)``, created by the first increment
    and never deleted. Stored totals are raw sums so concurrent increments
    commute; every read clamps to one day's worth of minutes.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._init_schema()

    def __enter__(self) -> MinuteStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path, *, timeout: float = 5.0) -> MinuteStore:
        """Open or create a database at the given path.

        Args:
            path: Database file.
            timeout: Seconds to wait on a lock held by another writer.
        """
        conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> MinuteStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    def increment_minutes(self, user_id: str, day: dt.date, minutes: int) -> int:
        """Add minutes to a day's record, creating it if needed.

        Args:
            user_id: Owner of the record.
            day: Calendar date in the reference timezone.
            minutes: Positive number of minutes to add.

        Returns:
            The day's clamped total after the increment.

        Raises:
            ValueError: If minutes is not positive.
        """
        if minutes <= 0:
            raise ValueError(f"minutes must be positive, got {minutes}")
        now = _utc_now()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO daily_minutes (user_id, date, minutes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    minutes = minutes + excluded.minutes,
                    updated_at = excluded.updated_at
                """,
                (user_id, day.isoformat(), minutes, now, now),
            )
            row = self._conn.execute(
                "SELECT minutes FROM daily_minutes WHERE user_id = ? AND date = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        total = _clamp(row["minutes"])
        logger.debug("user=%s date=%s +%d -> %d", user_id, day, minutes, total)
        return total

    def get_minutes_for_date(self, user_id: str, day: dt.date) -> int:
        """Clamped total for one day, 0 if no record exists."""
        with self._lock:
            row = self._conn.execute(
                "SELECT minutes FROM daily_minutes WHERE user_id = ? AND date = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        return _clamp(row["minutes"]) if row else 0

    def get_minutes_for_range(self, user_id: str, start: dt.date, end: dt.date) -> list[DailyMinutes]:
        """Records between two dates, both inclusive, ordered by date.

        Days without a record are omitted.
        """
        if end < start:
            raise ValueError(f"end {end} is before start {start}")
        with self._lock:
            cursor = self._conn.execute(
                """
                SELECT date, minutes FROM daily_minutes
                WHERE user_id = ? AND date >= ? AND date <= ?
                ORDER BY date ASC
                """,
                (user_id, start.isoformat(), end.isoformat()),
            )
            rows = cursor.fetchall()
        return [
            DailyMinutes(date=dt.date.fromisoformat(row["date"]), minutes=row["minutes"])
            for row in rows
        ]
