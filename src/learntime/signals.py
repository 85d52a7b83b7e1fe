"""Minimal synchronous observer lists."""

from __future__ import annotations

from typing import Any, Callable


class Signal:
    """A named list of callbacks invoked in connection order.

    Listener exceptions propagate to the emitter; listeners are expected to
    be cheap UI hooks, not I/O.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[..., Any]] = []

    def connect(self, listener: Callable[..., Any]) -> Callable[[], None]:
        """Register a listener. Returns a function that disconnects it."""
        self._listeners.append(listener)

        def disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return disconnect

    def emit(self, *args: Any) -> None:
        for listener in list(self._listeners):
            listener(*args)

    def __len__(self) -> int:
        return len(self._listeners)
