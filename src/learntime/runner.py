"""Timer runtime for a session tracker."""

from __future__ import annotations

import logging
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from learntime.clock import SystemClock, next_midnight
from learntime.config import TrackerConfig
from learntime.tracker import SessionTracker
from learntime.week import WeekView

logger = logging.getLogger(__name__)

# Ticks get a single worker so they never interleave; network work gets its own
# pool so a slow request cannot hold up the second counter.
TICK_EXECUTOR = "default"
NETWORK_EXECUTOR = "network"


class TrackerRunner:
    """Owns the tracker's timers.

    Jobs:
        tick      every ``tick_interval_seconds``
        flush     every ``flush_interval_seconds`` (safety net)
        refresh   every ``refresh_interval_seconds``: retry buffer, re-fetch week
        midnight  00:00 in the reference timezone: rollover, re-fetch week
    """

    def __init__(
        self,
        tracker: SessionTracker,
        week_view: WeekView | None = None,
        config: TrackerConfig | None = None,
        *,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._tracker = tracker
        self._week_view = week_view
        self._config = config or TrackerConfig()
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=self._config.tz,
            executors={
                TICK_EXECUTOR: ThreadPoolExecutor(1),
                NETWORK_EXECUTOR: ThreadPoolExecutor(2),
            },
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._disconnects: list[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def dispatch(self, job: Callable[[], Any]) -> None:
        """Run a one-off job on the network pool as soon as possible."""
        self.scheduler.add_job(job, executor=NETWORK_EXECUTOR, misfire_grace_time=None)

    def start(self) -> None:
        """Schedule all timers and start the tracker."""
        if self.running:
            raise RuntimeError("Tracker runner already started")

        logging.getLogger("apscheduler").setLevel(logging.WARNING)
        config = self._config
        self._tracker.set_dispatcher(self.dispatch)

        self.scheduler.add_job(
            self._tracker.tick,
            trigger=IntervalTrigger(seconds=config.tick_interval_seconds),
            id="tick",
            name="Second accumulator",
            executor=TICK_EXECUTOR,
            misfire_grace_time=1,
        )
        self.scheduler.add_job(
            self._tracker.flush,
            trigger=IntervalTrigger(seconds=config.flush_interval_seconds),
            id="flush",
            name="Safety-net flush",
            executor=NETWORK_EXECUTOR,
            misfire_grace_time=30,
        )
        self.scheduler.add_job(
            self._refresh,
            trigger=IntervalTrigger(seconds=config.refresh_interval_seconds),
            id="refresh",
            name="Retry and refresh",
            executor=NETWORK_EXECUTOR,
            misfire_grace_time=60,
        )
        self.scheduler.add_job(
            self._midnight,
            trigger=CronTrigger(hour=0, minute=0, timezone=config.tz),
            id="midnight",
            name="Day rollover",
            executor=NETWORK_EXECUTOR,
            misfire_grace_time=300,
        )

        if self._week_view is not None:
            week_view = self._week_view
            self._disconnects.append(
                self._tracker.flushed.connect(lambda *_: self.dispatch(week_view.refresh))
            )

        self.scheduler.start()
        self._tracker.start()
        if self._week_view is not None:
            self.dispatch(self._week_view.refresh)
        logger.info(
            "Tracker running (timezone %s, next rollover %s)",
            config.reference_timezone,
            next_midnight(SystemClock().now(), config.tz).isoformat(),
        )

    def stop(self) -> None:
        """Cancel every timer, then flush once more on the calling thread."""
        if self.running:
            self.scheduler.shutdown(wait=False)
        for disconnect in self._disconnects:
            disconnect()
        self._disconnects = []
        self._tracker.close()
        logger.info("Tracker stopped")

    def _refresh(self) -> None:
        self._tracker.retry_failed()
        if self._week_view is not None:
            self._week_view.refresh()

    def _midnight(self) -> None:
        self._tracker.rollover()
        if self._week_view is not None:
            self._week_view.current_week()
