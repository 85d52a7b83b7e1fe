"""Local key-value persistence and the client-side minute cache."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import date
from pathlib import Path
from typing import Protocol

from learntime.config import MAX_DAILY_MINUTES

logger = logging.getLogger(__name__)

FAILED_MINUTES_KEY = "failed_minutes"


class KeyValueStore(Protocol):
    """String-to-string storage with localStorage semantics."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Dict-backed store. Contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SqliteKeyValueStore:
    """SQLite-backed key-value store.

    Safe to share between the tick and network threads of one process; the
    connection is guarded by a lock.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._conn.executescript(KV_SCHEMA)
        self._conn.commit()

    def __enter__(self) -> SqliteKeyValueStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    @classmethod
    def open(cls, path: Path) -> SqliteKeyValueStore:
        """Open or create a store at the given path."""
        return cls(sqlite3.connect(path, check_same_thread=False))

    @classmethod
    def open_in_memory(cls) -> SqliteKeyValueStore:
        return cls(sqlite3.connect(":memory:", check_same_thread=False))

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()


def _minutes_key(day: date) -> str:
    return f"minutes_{day.isoformat()}"


def _parse_int(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer cache value %r", raw)
        return 0


class LocalCache:
    """Client-side mirror of per-day minute totals plus the failed-flush buffer.

    Day totals live under ``minutes_<YYYY-MM-DD>``. The failed-flush buffer
    is a JSON object ``{"YYYY-MM-DD": minutes}`` under ``failed_minutes`` so
    retried minutes are credited to the day they were practised.
    """

    def __init__(self, store: KeyValueStore, *, max_daily_minutes: int = MAX_DAILY_MINUTES) -> None:
        self._store = store
        self._max = max_daily_minutes
        self._lock = threading.Lock()

    def cached_minutes(self, day: date) -> int:
        """Cached total for a day, clamped to ``[0, max_daily_minutes]``."""
        return max(0, min(_parse_int(self._store.get(_minutes_key(day))), self._max))

    def set_cached_minutes(self, day: date, minutes: int) -> None:
        self._store.set(_minutes_key(day), str(max(0, min(minutes, self._max))))

    def raise_cached_minutes(self, day: date, minutes: int) -> int:
        """Set the cached total to ``max(cached, minutes)`` and return it."""
        with self._lock:
            total = max(self.cached_minutes(day), min(minutes, self._max))
            self.set_cached_minutes(day, total)
        return total

    def add_cached_minutes(self, day: date, minutes: int) -> int:
        """Add minutes to a day's cached total and return the clamped result."""
        with self._lock:
            raw = _parse_int(self._store.get(_minutes_key(day))) + minutes
            self.set_cached_minutes(day, raw)
        return self.cached_minutes(day)

    def failed_buffer(self) -> dict[date, int]:
        """Undelivered minutes per day, oldest first."""
        raw = self._store.get(FAILED_MINUTES_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable failed-minutes buffer: %r", raw)
            return {}
        if not isinstance(data, dict):
            logger.warning("Discarding malformed failed-minutes buffer: %r", raw)
            return {}
        buffer: dict[date, int] = {}
        for key, value in data.items():
            try:
                day = date.fromisoformat(key)
                minutes = int(value)
            except (TypeError, ValueError):
                logger.warning("Skipping bad buffer entry %r=%r", key, value)
                continue
            if minutes > 0:
                buffer[day] = minutes
        return dict(sorted(buffer.items()))

    def _write_buffer(self, buffer: dict[date, int]) -> None:
        if not buffer:
            self._store.delete(FAILED_MINUTES_KEY)
            return
        payload = {day.isoformat(): minutes for day, minutes in sorted(buffer.items())}
        self._store.set(FAILED_MINUTES_KEY, json.dumps(payload))

    def buffer_failed(self, day: date, minutes: int) -> int:
        """Append undelivered minutes for a day. Returns the new pending total."""
        if minutes <= 0:
            raise ValueError(f"minutes must be positive, got {minutes}")
        with self._lock:
            buffer = self.failed_buffer()
            buffer[day] = buffer.get(day, 0) + minutes
            self._write_buffer(buffer)
            return sum(buffer.values())

    def drain_failed(self, day: date, minutes: int) -> None:
        """Remove delivered minutes for a day from the buffer."""
        with self._lock:
            buffer = self.failed_buffer()
            remaining = buffer.get(day, 0) - minutes
            if remaining > 0:
                buffer[day] = remaining
            else:
                buffer.pop(day, None)
            self._write_buffer(buffer)

    @property
    def pending_minutes(self) -> int:
        return sum(self.failed_buffer().values())
