"""Activity detection: is the user here and looking at the page?"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from learntime.clock import Clock
from learntime.signals import Signal

logger = logging.getLogger(__name__)

# Interaction events that count as the user being present
ACTIVITY_EVENT_TYPES = frozenset({"mousemove", "keydown", "click", "scroll", "touchstart"})

DEFAULT_IDLE_THRESHOLD_SECONDS = 300


class ActivityPort:
    """Injectable source of interaction and visibility events.

    In a browser this is fed by DOM listeners; elsewhere anything can push
    events into it (stdin lines, a test).
    """

    def __init__(self, *, visible: bool = True) -> None:
        self.interaction = Signal("interaction")
        self.visibility = Signal("visibility")
        self._visible = visible

    @property
    def visible(self) -> bool:
        return self._visible

    def emit_interaction(self, event_type: str) -> None:
        self.interaction.emit(event_type)

    def set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        self.visibility.emit(visible)


class ActivityMonitor:
    """Classifies the current moment as active or idle.

    A moment is active iff the document is visible and the last qualifying
    interaction was less than ``idle_threshold_seconds`` ago. The last
    activity timestamp starts at construction time, so the first tick is
    always active.
    """

    def __init__(
        self,
        clock: Clock,
        *,
        idle_threshold_seconds: int = DEFAULT_IDLE_THRESHOLD_SECONDS,
        visible: bool = True,
    ) -> None:
        self._clock = clock
        self._idle_threshold = timedelta(seconds=idle_threshold_seconds)
        self.last_activity: datetime = clock.now()
        self.visible = visible
        self.became_visible = Signal("became_visible")
        self._disconnects: list[Callable[[], None]] = []

    def attach(self, port: ActivityPort) -> None:
        """Start listening to a port. Only one port at a time."""
        self.detach()
        self.visible = port.visible
        self._disconnects = [
            port.interaction.connect(self.record_activity),
            port.visibility.connect(self.set_visible),
        ]

    def detach(self) -> None:
        for disconnect in self._disconnects:
            disconnect()
        self._disconnects = []

    def record_activity(self, event_type: str) -> None:
        """Note a user interaction. Unknown event types are ignored."""
        if event_type not in ACTIVITY_EVENT_TYPES:
            return
        now = self._clock.now()
        if now - self.last_activity >= self._idle_threshold:
            logger.debug("User active again after %s", now - self.last_activity)
        self.last_activity = now

    def set_visible(self, visible: bool) -> None:
        was_visible = self.visible
        self.visible = visible
        if visible and not was_visible:
            self.became_visible.emit()

    def is_idle(self, at: datetime | None = None) -> bool:
        """True once the idle threshold has passed since the last interaction."""
        if at is None:
            at = self._clock.now()
        return at - self.last_activity >= self._idle_threshold

    def is_active(self, at: datetime | None = None) -> bool:
        """Visible and not idle, evaluated at ``at`` (default: now)."""
        return self.visible and not self.is_idle(at)
