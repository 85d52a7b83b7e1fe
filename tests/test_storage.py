"""Tests for the local minute cache and failed-flush buffer."""

import json
from datetime import date

import pytest

from learntime.storage import LocalCache, MemoryKeyValueStore, SqliteKeyValueStore


class TestSqliteKeyValueStore:
    """Tests for the SQLite key-value store."""

    def test_set_get_delete(self):
        store = SqliteKeyValueStore.open_in_memory()
        assert store.get("a") is None

        store.set("a", "1")
        store.set("a", "2")
        assert store.get("a") == "2"

        store.delete("a")
        assert store.get("a") is None

    def test_persists_to_file(self, tmp_path):
        path = tmp_path / "cache.db"
        with SqliteKeyValueStore.open(path) as store:
            store.set("minutes_2024-05-01", "12")

        with SqliteKeyValueStore.open(path) as store:
            assert store.get("minutes_2024-05-01") == "12"


class TestCachedMinutes:
    """Tests for per-day cached totals."""

    def test_missing_day_is_zero(self):
        cache = LocalCache(MemoryKeyValueStore())
        assert cache.cached_minutes(date(2024, 5, 1)) == 0

    def test_uses_date_keys(self):
        kv = MemoryKeyValueStore()
        LocalCache(kv).set_cached_minutes(date(2024, 5, 1), 12)
        assert kv.get("minutes_2024-05-01") == "12"

    def test_clamps_stored_values(self):
        kv = MemoryKeyValueStore({"minutes_2024-05-01": "2000", "minutes_2024-05-02": "-4"})
        cache = LocalCache(kv)
        assert cache.cached_minutes(date(2024, 5, 1)) == 1440
        assert cache.cached_minutes(date(2024, 5, 2)) == 0

    def test_garbage_value_reads_as_zero(self):
        cache = LocalCache(MemoryKeyValueStore({"minutes_2024-05-01": "abc"}))
        assert cache.cached_minutes(date(2024, 5, 1)) == 0

    def test_raise_keeps_larger(self):
        cache = LocalCache(MemoryKeyValueStore())
        cache.set_cached_minutes(date(2024, 5, 1), 20)

        assert cache.raise_cached_minutes(date(2024, 5, 1), 15) == 20
        assert cache.raise_cached_minutes(date(2024, 5, 1), 25) == 25
        assert cache.cached_minutes(date(2024, 5, 1)) == 25

    def test_add(self):
        cache = LocalCache(MemoryKeyValueStore())
        cache.add_cached_minutes(date(2024, 5, 1), 3)
        assert cache.add_cached_minutes(date(2024, 5, 1), 4) == 7

    def test_custom_cap(self):
        cache = LocalCache(MemoryKeyValueStore(), max_daily_minutes=60)
        assert cache.add_cached_minutes(date(2024, 5, 1), 90) == 60


class TestFailedBuffer:
    """Tests for the per-date failed-flush buffer."""

    def test_empty(self):
        cache = LocalCache(MemoryKeyValueStore())
        assert cache.failed_buffer() == {}
        assert cache.pending_minutes == 0

    def test_buffer_accumulates_per_day(self):
        kv = MemoryKeyValueStore()
        cache = LocalCache(kv)
        cache.buffer_failed(date(2024, 5, 2), 1)
        cache.buffer_failed(date(2024, 5, 1), 2)
        assert cache.buffer_failed(date(2024, 5, 2), 3) == 6

        assert list(cache.failed_buffer().items()) == [
            (date(2024, 5, 1), 2),
            (date(2024, 5, 2), 4),
        ]
        assert json.loads(kv.get("failed_minutes")) == {"2024-05-01": 2, "2024-05-02": 4}

    def test_rejects_non_positive(self):
        cache = LocalCache(MemoryKeyValueStore())
        with pytest.raises(ValueError):
            cache.buffer_failed(date(2024, 5, 1), 0)

    def test_drain_partial_and_full(self):
        kv = MemoryKeyValueStore()
        cache = LocalCache(kv)
        cache.buffer_failed(date(2024, 5, 1), 5)

        cache.drain_failed(date(2024, 5, 1), 2)
        assert cache.pending_minutes == 3

        cache.drain_failed(date(2024, 5, 1), 3)
        assert cache.failed_buffer() == {}
        assert kv.get("failed_minutes") is None

    def test_unreadable_buffer_is_discarded(self):
        cache = LocalCache(MemoryKeyValueStore({"failed_minutes": "{not json"}))
        assert cache.failed_buffer() == {}

    def test_bad_entries_skipped(self):
        raw = json.dumps({"2024-05-01": 3, "yesterday": 2, "2024-05-02": "x", "2024-05-03": 0})
        cache = LocalCache(MemoryKeyValueStore({"failed_minutes": raw}))
        assert cache.failed_buffer() == {date(2024, 5, 1): 3}
