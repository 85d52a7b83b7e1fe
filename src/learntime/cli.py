"""CLI entry point for learn-time."""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import ExitStack
from datetime import date, datetime, timezone
from pathlib import Path

import click
from pydantic import ValidationError

from learntime.activity import ActivityMonitor, ActivityPort
from learntime.backend import BackendError, HttpBackend, MinuteBackend, StoreBackend
from learntime.clock import SystemClock, local_today, parse_date, week_start
from learntime.config import DEFAULT_CACHE_PATH, DEFAULT_DB_PATH, MAX_DAILY_MINUTES, TrackerConfig
from learntime.db import MinuteStore
from learntime.runner import TrackerRunner
from learntime.storage import LocalCache, SqliteKeyValueStore
from learntime.tracker import SessionTracker
from learntime.week import WeekDay, WeekView

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"


def format_minutes(minutes: int) -> str:
    """Format minutes as '45m', '2h' or '1h 05m' (clamped to one day).

    Args:
        minutes: Whole minutes.

    Returns:
        Formatted duration string.
    """
    minutes = max(0, min(minutes, MAX_DAILY_MINUTES))
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    remainder = minutes % 60
    if remainder == 0:
        return f"{hours}h"
    return f"{hours}h {remainder:02d}m"


def format_session(seconds: int) -> str:
    """Format live session seconds as '42 seconds' or '2 min 5 sec'."""
    minutes = seconds // 60
    remainder = seconds % 60
    if minutes == 0:
        return f"{remainder} second{'s' if remainder != 1 else ''}"
    return f"{minutes} min {remainder} sec"


def make_progress_bar(value: int, max_value: int, width: int = 16) -> str:
    """Create ASCII progress bar.

    Args:
        value: Current value.
        max_value: Maximum value (100%).
        width: Total width of bar (default: 16).

    Returns:
        Progress bar string like '████████░░░░░░░░'.
    """
    if max_value == 0 or value == 0:
        return "░" * width
    filled = max(1, min(width, round((value / max_value) * width)))
    return "█" * filled + "░" * (width - filled)


class AppContext:
    """Everything a command needs, opened lazily from the group options."""

    def __init__(
        self,
        *,
        db: Path,
        cache: Path,
        user: str | None,
        api_url: str | None,
        token: str | None,
        config: TrackerConfig,
    ) -> None:
        self.db_path = db
        self.cache_path = cache
        self.user = user
        self.api_url = api_url
        self.token = token
        self.config = config
        self._stack = ExitStack()

    def open_cache(self) -> LocalCache:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        store = self._stack.enter_context(SqliteKeyValueStore.open(self.cache_path))
        return LocalCache(store, max_daily_minutes=self.config.max_daily_minutes)

    def open_backend(self) -> MinuteBackend:
        if self.api_url:
            return HttpBackend(
                self.api_url, self.token, timeout=self.config.request_timeout_seconds
            )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        store = self._stack.enter_context(MinuteStore.open(self.db_path))
        return StoreBackend(store, self.user)

    def close(self) -> None:
        self._stack.close()


def _parse_day_option(value: str | None, config: TrackerConfig) -> date:
    if value is None or value == "today":
        return local_today(SystemClock(), config.tz)
    try:
        return parse_date(value)
    except ValueError:
        click.echo(f"Invalid date format: {value}. Use YYYY-MM-DD.", err=True)
        sys.exit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_PATH,
    help="Path to SQLite minute store (used when --api-url is not set)",
)
@click.option(
    "--cache",
    type=click.Path(path_type=Path),
    default=DEFAULT_CACHE_PATH,
    help="Path to local cache database",
)
@click.option("--user", envvar="LT_USER", help="User id for the local minute store")
@click.option("--api-url", envvar="LT_API_URL", help="Base URL of the session-minutes API")
@click.option("--token", envvar="LT_TOKEN", help="Bearer token for the API")
@click.option("--tz", "reference_timezone", help="Reference timezone (default Asia/Karachi)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    db: Path,
    cache: Path,
    user: str | None,
    api_url: str | None,
    token: str | None,
    reference_timezone: str | None,
    verbose: bool,
) -> None:
    """Learning-time tracker CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    try:
        config = TrackerConfig.from_env(reference_timezone=reference_timezone)
    except ValidationError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)
    app = AppContext(db=db, cache=cache, user=user, api_url=api_url, token=token, config=config)
    ctx.obj = app
    ctx.call_on_close(app.close)


@main.command("week")
@click.option(
    "--date",
    "day_value",
    default=None,
    help="Any date in the week to show (YYYY-MM-DD, default: today)",
)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def week_command(app: AppContext, day_value: str | None, output_json: bool) -> None:
    """Show practised minutes for a Sunday-to-Saturday week."""
    day = _parse_day_option(day_value, app.config)
    start = week_start(day)
    view = WeekView(SystemClock(), app.open_cache(), app.open_backend(), app.config, start=start)
    if start > view.today():
        click.echo("Cannot show a week that has not started yet.", err=True)
        sys.exit(1)
    days = view.refresh()

    if output_json:
        _output_json_week(view, days)
    else:
        _output_human_week(view, days)


def _output_json_week(view: WeekView, days: list[WeekDay]) -> None:
    """Output JSON week."""
    output = {
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "week_start": view.week_start.isoformat(),
        "week_end": view.week_end.isoformat(),
        "total_minutes": view.week_total(days),
        "is_current_week": view.is_current_week(),
        "can_go_next": view.can_go_next(),
        "days": [day.model_dump(mode="json") for day in days],
    }
    click.echo(json.dumps(output, indent=2))


def _output_human_week(view: WeekView, days: list[WeekDay]) -> None:
    """Output human-readable week."""
    header = view.range_label()
    if view.is_current_week():
        header += " (this week)"
    click.echo(f"Practice: {header}")
    click.echo()
    click.echo(f"Total: {format_minutes(view.week_total(days))}")
    click.echo()

    # Scale bars to at least 10 minutes so a light week doesn't look full
    max_minutes = max([10] + [day.minutes for day in days])
    for day in days:
        marker = "*" if day.is_today else " "
        if day.is_future:
            amount = "-"
            bar = ""
        else:
            amount = format_minutes(day.minutes)
            bar = make_progress_bar(day.minutes, max_minutes)
        click.echo(f"{marker} {day.label} {day.month} {day.day_number:>2}  {amount:>7}   {bar}".rstrip())


@main.command("record")
@click.argument("minutes", type=click.IntRange(min=1, max=MAX_DAILY_MINUTES))
@click.option("--date", "day_value", default=None, help="Date practised (YYYY-MM-DD, default: today)")
@click.pass_obj
def record_command(app: AppContext, minutes: int, day_value: str | None) -> None:
    """Add practised MINUTES for a day.

    If the store cannot be reached the minutes are buffered locally and sent
    by `lt retry`.
    """
    day = _parse_day_option(day_value, app.config)
    cache = app.open_cache()
    backend = app.open_backend()

    if not backend.authenticated:
        total = cache.add_cached_minutes(day, minutes)
        click.echo(f"Not logged in: recorded {minutes}m locally for {day} (cached total {format_minutes(total)})")
        return

    try:
        total = backend.increment_minutes(day, minutes)
    except BackendError as e:
        pending = cache.buffer_failed(day, minutes)
        click.echo(f"Warning: could not record minutes ({e}); buffered for retry ({pending}m pending)", err=True)
        sys.exit(1)

    cache.set_cached_minutes(day, total)
    click.echo(f"Recorded {minutes}m for {day} (total {format_minutes(total)})")


@main.command("retry")
@click.pass_obj
def retry_command(app: AppContext) -> None:
    """Send minutes buffered by earlier failed flushes."""
    cache = app.open_cache()
    backend = app.open_backend()
    pending = cache.pending_minutes

    if pending == 0:
        click.echo("Nothing to retry")
        return
    if not backend.authenticated:
        click.echo(f"Not logged in: {pending}m still pending", err=True)
        sys.exit(1)

    tracker = SessionTracker(
        SystemClock(), ActivityMonitor(SystemClock()), backend, cache, app.config
    )
    delivered = tracker.retry_failed()
    remaining = cache.pending_minutes
    click.echo(f"Retried {delivered}m ({remaining}m still pending)")
    if remaining:
        sys.exit(1)


@main.command("status")
@click.pass_obj
def status_command(app: AppContext) -> None:
    """Show today's minutes, pending retries and login state."""
    cache = app.open_cache()
    backend = app.open_backend()
    today = local_today(SystemClock(), app.config.tz)

    minutes = cache.cached_minutes(today)
    source = "cache"
    if backend.authenticated:
        try:
            minutes = max(minutes, backend.get_minutes_for_date(today))
            source = "store"
        except BackendError as e:
            click.echo(f"Warning: store unavailable ({e}); showing cached minutes", err=True)

    click.echo(f"Today ({today}, {app.config.reference_timezone}): {format_minutes(minutes)} [{source}]")
    click.echo(f"Logged in: {'yes' if backend.authenticated else 'no'}")
    buffer = cache.failed_buffer()
    if buffer:
        click.echo(f"Pending retry: {sum(buffer.values())}m")
        for day, pending in buffer.items():
            click.echo(f"  {day}: {pending}m")
    else:
        click.echo("Pending retry: none")


@main.command("track")
@click.option(
    "--seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after this many seconds (default: until end of input)",
)
@click.pass_obj
def track_command(app: AppContext, seconds: int | None) -> None:
    """Track practice time live.

    Every line typed on stdin counts as activity. Whole minutes are flushed
    as they accrue; stop with Ctrl-D or Ctrl-C.
    """
    clock = SystemClock()
    cache = app.open_cache()
    backend = app.open_backend()
    port = ActivityPort()
    monitor = ActivityMonitor(clock, idle_threshold_seconds=app.config.idle_threshold_seconds)
    monitor.attach(port)
    tracker = SessionTracker(clock, monitor, backend, cache, app.config)
    runner = TrackerRunner(tracker, config=app.config)

    tracker.flushed.connect(
        lambda day, minutes, total: click.echo(f"Recorded {minutes}m for {day} (total {format_minutes(total)})")
    )
    if not tracker.authenticated:
        click.echo("Not logged in: minutes are kept in the local cache only", err=True)

    done = threading.Event()

    def read_input() -> None:
        for _line in sys.stdin:
            port.emit_interaction("keydown")
        done.set()

    reader = threading.Thread(target=read_input, name="stdin-activity", daemon=True)
    runner.start()
    reader.start()
    try:
        done.wait(timeout=seconds)
    except KeyboardInterrupt:
        pass
    finally:
        runner.stop()

    click.echo(f"Session: {format_session(tracker.accumulated_seconds)}")
    click.echo(f"Today: {format_minutes(tracker.today_minutes())}")


if __name__ == "__main__":
    main()
