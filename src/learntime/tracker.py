"""Session-time tracker: active seconds in, durable practised minutes out.

The tracker is driven from outside. Something calls ``tick()`` once per
second and ``flush()``/``retry_failed()``/``rollover()`` on their own
schedules (see ``learntime.runner``). Two locks keep it consistent when
those callbacks land on different threads:

* ``_state_lock`` guards the in-memory ``SessionClock``. It is never held
  across network I/O, so a hung request cannot stall the second counter.
* ``_flush_lock`` admits one minute-boundary flush at a time. A second
  trigger arriving while a flush is in flight is a no-op, which makes the
  tick-path and safety-net flushes idempotent.

Failed deltas move to the Failed-Flush Buffer and are only ever resent by
``retry_failed()``; the minute-boundary path subtracts them out so the
same minutes are never submitted twice.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable

from learntime.activity import ActivityMonitor
from learntime.backend import BackendError, MinuteBackend, NotAuthenticatedError
from learntime.clock import Clock, local_today
from learntime.config import TrackerConfig
from learntime.signals import Signal
from learntime.storage import LocalCache

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Callable[[], Any]], None]


def _run_inline(job: Callable[[], Any]) -> None:
    job()


@dataclass
class SessionClock:
    """Per-tab counters. Reset on reload and at midnight, never persisted."""

    day: dt.date
    accumulated_seconds: int = 0
    # Delivered to the backend this session
    last_flushed_minutes: int = 0
    # Handed to the failed-flush buffer this session, not yet delivered
    buffered_minutes: int = 0
    # Written to the local cache while logged out, not yet delivered
    local_only_minutes: int = 0

    @property
    def whole_minutes(self) -> int:
        return self.accumulated_seconds // 60

    @property
    def unreported_minutes(self) -> int:
        """Whole minutes neither delivered nor waiting in the retry buffer."""
        return self.whole_minutes - self.last_flushed_minutes - self.buffered_minutes


class SessionTracker:
    """Accumulates active seconds and flushes whole minutes to a backend.

    Signals:
        ticked(seconds): after every tick, with the current accumulated seconds.
        flushed(day, minutes, total): after minutes reach the backend, from
            either the flush or the retry path.
        rolled_over(day): after the session resets for a new calendar day.
    """

    def __init__(
        self,
        clock: Clock,
        monitor: ActivityMonitor,
        backend: MinuteBackend,
        cache: LocalCache,
        config: TrackerConfig | None = None,
        *,
        dispatch: Dispatcher | None = None,
    ) -> None:
        self._clock = clock
        self._monitor = monitor
        self._backend = backend
        self._cache = cache
        self._config = config or TrackerConfig()
        self._dispatch = dispatch or _run_inline
        self._tick_interval = timedelta(seconds=self._config.tick_interval_seconds)

        self._state_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._retry_lock = threading.Lock()
        self._rollover_lock = threading.Lock()
        self._session = SessionClock(day=self.today())
        self._closed = False
        self._disconnects: list[Callable[[], None]] = []

        self.ticked = Signal("ticked")
        self.flushed = Signal("flushed")
        self.rolled_over = Signal("rolled_over")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Seed today's cache from the backend and start listening for retry triggers."""
        self._disconnects = [
            self._backend.credential_changed.connect(self._on_credential_changed),
            self._monitor.became_visible.connect(self._on_foreground),
        ]
        self.seed_today()
        if self._backend.authenticated:
            self._dispatch(self.retry_failed)

    def close(self) -> None:
        """Final synchronous flush, then stop reacting to anything."""
        if self._closed:
            return
        try:
            self.flush(block=True)
        finally:
            with self._state_lock:
                self._closed = True
            for disconnect in self._disconnects:
                disconnect()
            self._disconnects = []
            self._monitor.detach()
        logger.info("Tracker closed after %ds this session", self._session.accumulated_seconds)

    def set_dispatcher(self, dispatch: Dispatcher) -> None:
        """Route flush and rollover work somewhere other than the calling thread."""
        self._dispatch = dispatch

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def today(self) -> dt.date:
        return local_today(self._clock, self._config.tz)

    def snapshot(self) -> SessionClock:
        """Copy of the current session counters."""
        with self._state_lock:
            return replace(self._session)

    @property
    def accumulated_seconds(self) -> int:
        return self._session.accumulated_seconds

    @property
    def authenticated(self) -> bool:
        return self._backend.authenticated

    def today_minutes(self) -> int:
        """Best current figure for today: durable total or live whole minutes."""
        session = self.snapshot()
        durable = self._cache.cached_minutes(session.day)
        return min(max(durable, session.whole_minutes), self._config.max_daily_minutes)

    # ------------------------------------------------------------------
    # Second accumulator
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """Count one second if the user was active during it.

        Returns the accumulated seconds after the tick.
        """
        now = self._clock.now()
        boundary = False
        day_changed = False
        with self._state_lock:
            if self._closed:
                return self._session.accumulated_seconds
            # The tick accounts for the second that just ended
            if self._monitor.is_active(at=now - self._tick_interval):
                self._session.accumulated_seconds += 1
                boundary = self._session.accumulated_seconds % 60 == 0
            seconds = self._session.accumulated_seconds
            day_changed = now.astimezone(self._config.tz).date() != self._session.day

        self.ticked.emit(seconds)
        if day_changed:
            self._dispatch(self.rollover)
        elif boundary:
            self._dispatch(self.flush)
        return seconds

    # ------------------------------------------------------------------
    # Minute flusher
    # ------------------------------------------------------------------

    def flush(self, *, block: bool = False) -> int:
        """Send whole minutes not yet reported.

        Args:
            block: Wait for an in-flight flush instead of skipping.

        Returns:
            Minutes delivered to the backend by this call.
        """
        if block:
            acquired = self._flush_lock.acquire(timeout=self._config.request_timeout_seconds)
        else:
            acquired = self._flush_lock.acquire(blocking=False)
        if not acquired:
            logger.debug("Flush already in flight, skipping")
            return 0
        try:
            return self._flush_locked()
        finally:
            self._flush_lock.release()

    def _flush_locked(self) -> int:
        with self._state_lock:
            if self._closed:
                return 0
            day = self._session.day
            delta = self._session.unreported_minutes
        if delta <= 0:
            return 0

        if not self._backend.authenticated:
            self._record_local_only(day, delta)
            return 0

        try:
            total = self._backend.increment_minutes(day, delta)
        except NotAuthenticatedError as e:
            logger.info("Flush of %d min for %s skipped: %s", delta, day, e)
            self._record_local_only(day, delta)
            return 0
        except BackendError as e:
            pending = self._cache.buffer_failed(day, delta)
            with self._state_lock:
                if self._session.day == day:
                    self._session.buffered_minutes += delta
                    # Cached local-only minutes were part of delta
                    self._session.local_only_minutes = 0
            logger.warning(
                "Flush of %d min for %s failed, buffered for retry (%d pending): %s",
                delta, day, pending, e,
            )
            return 0

        with self._state_lock:
            if self._session.day == day:
                self._session.last_flushed_minutes += delta
                self._session.local_only_minutes = 0
        self._cache.set_cached_minutes(day, total)
        logger.info("Flushed %d min for %s (total %d)", delta, day, total)
        self.flushed.emit(day, delta, total)
        return delta

    def _record_local_only(self, day: dt.date, delta: int) -> None:
        """Mirror unreported minutes into the local cache, each minute once."""
        with self._state_lock:
            new_minutes = delta - self._session.local_only_minutes
            if new_minutes <= 0 or self._session.day != day:
                return
            self._session.local_only_minutes += new_minutes
        total = self._cache.add_cached_minutes(day, new_minutes)
        logger.debug("Not logged in; cached %d min locally for %s (total %d)", new_minutes, day, total)

    # ------------------------------------------------------------------
    # Retry path
    # ------------------------------------------------------------------

    def retry_failed(self) -> int:
        """Resend buffered minutes, oldest day first.

        Stops at the first failure; whatever is left stays buffered.

        Returns:
            Minutes delivered by this call.
        """
        if not self._backend.authenticated:
            return 0
        if not self._retry_lock.acquire(blocking=False):
            return 0
        delivered = 0
        try:
            for day, minutes in self._cache.failed_buffer().items():
                try:
                    total = self._backend.increment_minutes(day, minutes)
                except BackendError as e:
                    logger.warning("Retry of %d min for %s failed: %s", minutes, day, e)
                    break
                self._cache.drain_failed(day, minutes)
                self._cache.set_cached_minutes(day, total)
                with self._state_lock:
                    if self._session.day == day:
                        moved = min(minutes, self._session.buffered_minutes)
                        self._session.buffered_minutes -= moved
                        self._session.last_flushed_minutes += moved
                delivered += minutes
                logger.info("Retried %d buffered min for %s (total %d)", minutes, day, total)
                self.flushed.emit(day, minutes, total)
        finally:
            self._retry_lock.release()
        return delivered

    # ------------------------------------------------------------------
    # Day boundary
    # ------------------------------------------------------------------

    def rollover(self) -> bool:
        """Start a fresh session if the reference-timezone date has changed.

        Whole minutes still owed to the old day are flushed first; the
        sub-minute remainder is dropped.

        Returns:
            True if a new day was started.
        """
        if not self._rollover_lock.acquire(blocking=False):
            return False
        try:
            today = self.today()
            with self._state_lock:
                if self._closed or today == self._session.day:
                    return False
            self.flush(block=True)
            with self._state_lock:
                old_day = self._session.day
                self._session = SessionClock(day=today)
        finally:
            self._rollover_lock.release()
        logger.info("New day %s (was %s); session counters reset", today, old_day)
        self.rolled_over.emit(today)
        return True

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def seed_today(self) -> None:
        """Pull today's durable total into the local cache."""
        if not self._backend.authenticated:
            logger.debug("Not logged in; starting from local cache only")
            return
        day = self.today()
        try:
            minutes = self._backend.get_minutes_for_date(day)
        except BackendError as e:
            logger.warning("Could not load minutes for %s: %s", day, e)
            return
        self._cache.raise_cached_minutes(day, minutes)

    def _on_credential_changed(self, authenticated: bool) -> None:
        if not authenticated:
            logger.info("Logged out; accumulating locally")
            return
        logger.info("Logged in; syncing pending minutes")
        self._dispatch(self.retry_failed)
        self._dispatch(self.flush)
        self._dispatch(self.seed_today)

    def _on_foreground(self) -> None:
        self._dispatch(self.retry_failed)
