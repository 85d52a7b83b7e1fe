"""Clock capability and reference-timezone calendar helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime:
        """Return the current time as a timezone-aware datetime."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: datetime | None = None) -> None:
        if start is None:
            start = datetime.now(timezone.utc)
        elif start.tzinfo is None:
            raise ValueError("ManualClock needs a timezone-aware start time")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward and return the new time."""
        if seconds < 0:
            raise ValueError("Clocks only move forward")
        self._now += timedelta(seconds=seconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


def local_today(clock: Clock, tz: tzinfo) -> date:
    """Calendar date in the reference timezone."""
    return clock.now().astimezone(tz).date()


def next_midnight(now: datetime, tz: tzinfo) -> datetime:
    """First midnight strictly after ``now`` in the reference timezone."""
    local = now.astimezone(tz)
    tomorrow = local.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=tz)


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    # date.weekday(): Monday=0 ... Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` calendar date.

    Raises:
        ValueError: If the string is not a valid date.
    """
    return datetime.strptime(value, "%Y-%m-%d").date()
