"""Tests for activity detection."""

from datetime import datetime, timedelta, timezone

from learntime.activity import ActivityMonitor, ActivityPort
from learntime.clock import ManualClock

START = datetime(2024, 5, 1, 5, 0, tzinfo=timezone.utc)


class TestActivityMonitor:
    """Tests for the idle and visibility rules."""

    def test_active_at_mount(self):
        monitor = ActivityMonitor(ManualClock(START))
        assert monitor.is_active()

    def test_idle_at_threshold(self):
        clock = ManualClock(START)
        monitor = ActivityMonitor(clock, idle_threshold_seconds=300)

        clock.advance(299)
        assert monitor.is_active()
        clock.advance(1)
        assert monitor.is_idle()
        assert not monitor.is_active()

    def test_interaction_resets_idle(self):
        clock = ManualClock(START)
        monitor = ActivityMonitor(clock, idle_threshold_seconds=300)
        clock.advance(400)

        monitor.record_activity("scroll")

        assert monitor.last_activity == START + timedelta(seconds=400)
        assert monitor.is_active()

    def test_unknown_event_ignored(self):
        clock = ManualClock(START)
        monitor = ActivityMonitor(clock)
        clock.advance(10)
        monitor.record_activity("resize")
        assert monitor.last_activity == START

    def test_hidden_is_never_active(self):
        monitor = ActivityMonitor(ManualClock(START))
        monitor.record_activity("click")
        monitor.set_visible(False)
        assert not monitor.is_active()

    def test_is_active_at_explicit_instant(self):
        monitor = ActivityMonitor(ManualClock(START), idle_threshold_seconds=60)
        assert monitor.is_active(at=START + timedelta(seconds=59))
        assert not monitor.is_active(at=START + timedelta(seconds=60))

    def test_became_visible_only_on_transition(self):
        monitor = ActivityMonitor(ManualClock(START))
        calls = []
        monitor.became_visible.connect(lambda: calls.append(True))

        monitor.set_visible(True)
        monitor.set_visible(False)
        monitor.set_visible(True)

        assert calls == [True]


class TestActivityPort:
    """Tests for wiring a port into a monitor."""

    def test_port_events_reach_monitor(self):
        clock = ManualClock(START)
        port = ActivityPort()
        monitor = ActivityMonitor(clock)
        monitor.attach(port)

        clock.advance(30)
        port.emit_interaction("touchstart")
        assert monitor.last_activity == START + timedelta(seconds=30)

        port.set_visible(False)
        assert not monitor.visible

    def test_attach_takes_port_visibility(self):
        monitor = ActivityMonitor(ManualClock(START))
        monitor.attach(ActivityPort(visible=False))
        assert not monitor.is_active()

    def test_detach_stops_listening(self):
        clock = ManualClock(START)
        port = ActivityPort()
        monitor = ActivityMonitor(clock)
        monitor.attach(port)
        monitor.detach()

        clock.advance(30)
        port.emit_interaction("keydown")

        assert monitor.last_activity == START
        assert len(port.interaction) == 0
