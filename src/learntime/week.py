"""Seven-day view of practised minutes."""

from __future__ import annotations

import datetime as dt
import logging
from datetime import timedelta
from typing import Callable

from pydantic import BaseModel

from learntime.backend import BackendError, MinuteBackend
from learntime.clock import Clock, local_today, week_start
from learntime.config import TrackerConfig
from learntime.signals import Signal
from learntime.storage import LocalCache

logger = logging.getLogger(__name__)

DAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


class WeekDay(BaseModel):
    """One display-ready day in a week view."""

    date: dt.date
    label: str
    day_number: int
    month: str
    minutes: int
    is_today: bool
    is_past: bool
    is_future: bool


def day_label(day: dt.date) -> str:
    return DAY_LABELS[(day.weekday() + 1) % 7]


def format_week_range(start: dt.date) -> str:
    """Label a Sunday-to-Saturday week, e.g. 'May 5 - 11, 2024'."""
    end = start + timedelta(days=6)
    start_month = MONTH_LABELS[start.month - 1]
    end_month = MONTH_LABELS[end.month - 1]
    if start.month == end.month:
        return f"{start_month} {start.day} - {end.day}, {start.year}"
    if start.year == end.year:
        return f"{start_month} {start.day} - {end_month} {end.day}, {start.year}"
    return f"{start_month} {start.day}, {start.year} - {end_month} {end.day}, {end.year}"


class WeekView:
    """Merges cached, remote and live minutes into a navigable week.

    Per day the view shows ``max(cached, remote)``; today additionally takes
    the live session's whole minutes into account. Everything is clamped to
    ``[0, max_daily_minutes]``. The view never moves past the week that
    contains today.
    """

    def __init__(
        self,
        clock: Clock,
        cache: LocalCache,
        backend: MinuteBackend | None = None,
        config: TrackerConfig | None = None,
        *,
        live_minutes: Callable[[], int] | None = None,
        start: dt.date | None = None,
    ) -> None:
        self._clock = clock
        self._cache = cache
        self._backend = backend
        self._config = config or TrackerConfig()
        self._live_minutes = live_minutes
        self._remote: dict[dt.date, int] = {}
        if start is None:
            start = week_start(self.today())
        self._check_sunday(start)
        self.week_start = start
        self.updated = Signal("week_updated")
        if backend is not None:
            backend.credential_changed.connect(self._on_credential_changed)

    @staticmethod
    def _check_sunday(start: dt.date) -> None:
        if day_label(start) != "Sun":
            raise ValueError(f"Week must start on a Sunday, got {start} ({day_label(start)})")

    def _on_credential_changed(self, authenticated: bool) -> None:
        # Remote minutes belong to the previous caller
        self._remote.clear()

    def today(self) -> dt.date:
        return local_today(self._clock, self._config.tz)

    @property
    def week_end(self) -> dt.date:
        return self.week_start + timedelta(days=6)

    def _clamp(self, minutes: int) -> int:
        return max(0, min(minutes, self._config.max_daily_minutes))

    def day_minutes(self, day: dt.date, today: dt.date | None = None) -> int:
        """Resolved minute count for a single day."""
        if today is None:
            today = self.today()
        durable = max(self._cache.cached_minutes(day), self._remote.get(day, 0))
        if day == today and self._live_minutes is not None:
            durable = max(durable, self._live_minutes())
        return self._clamp(durable)

    def get_week(self, start: dt.date | None = None) -> list[WeekDay]:
        """Build the seven days starting at ``start`` (default: the current view).

        Raises:
            ValueError: If ``start`` is not a Sunday.
        """
        if start is None:
            start = self.week_start
        self._check_sunday(start)
        today = self.today()

        days: list[WeekDay] = []
        for offset in range(7):
            day = start + timedelta(days=offset)
            days.append(
                WeekDay(
                    date=day,
                    label=day_label(day),
                    day_number=day.day,
                    month=MONTH_LABELS[day.month - 1],
                    minutes=self.day_minutes(day, today),
                    is_today=day == today,
                    is_past=day < today,
                    is_future=day > today,
                )
            )
        return days

    def refresh(self) -> list[WeekDay]:
        """Re-fetch the current week from the backend and rebuild the view.

        Backend failures and missing credentials fall back to cached data.
        """
        # Remote minutes are only kept for the week on screen
        start, end = self.week_start, self.week_end
        self._remote = {day: m for day, m in self._remote.items() if start <= day <= end}
        if self._backend is not None and self._backend.authenticated:
            try:
                records = self._backend.get_minutes_for_range(start, end)
            except BackendError as e:
                logger.warning("Week refresh for %s failed, using cache: %s", self.week_start, e)
            else:
                self._remote = {record.date: record.minutes for record in records}
                for record in records:
                    self._cache.raise_cached_minutes(record.date, record.minutes)
                logger.debug("Refreshed %d days for week of %s", len(records), self.week_start)
        days = self.get_week()
        self.updated.emit(days)
        return days

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def previous_week(self) -> list[WeekDay]:
        self.week_start -= timedelta(days=7)
        return self.refresh()

    def can_go_next(self) -> bool:
        """True if the following week has already finished."""
        return self.week_end + timedelta(days=7) <= self.today()

    def next_week(self) -> list[WeekDay] | None:
        """Advance one week, or return None if that would reach past today."""
        if not self.can_go_next():
            logger.debug("Refusing to move past week of %s", self.week_start)
            return None
        self.week_start += timedelta(days=7)
        return self.refresh()

    def current_week(self) -> list[WeekDay]:
        """Jump back to the week containing today."""
        self.week_start = week_start(self.today())
        return self.refresh()

    def is_current_week(self) -> bool:
        return self.week_start == week_start(self.today())

    def week_total(self, days: list[WeekDay] | None = None) -> int:
        if days is None:
            days = self.get_week()
        return sum(day.minutes for day in days)

    def range_label(self) -> str:
        return format_week_range(self.week_start)
