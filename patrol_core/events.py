"""Per-event listener registries for robot platform events.

Each event source is its own :class:`EventHub`; a consumer subscribes to
exactly the events it needs and gets back an unsubscribe callable.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class EventHub:
    """Thread-safe list of listeners for one kind of event.

    Listener errors are logged and never reach the emitter.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[..., None]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[..., None]) -> Callable[[], None]:
        """Register *listener*; return a callable that removes it (idempotent)."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, *args) -> None:
        """Call every listener with *args* on the caller's thread."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.warning("%s listener raised an exception", self.name, exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


class PlatformEvents:
    """The three event sources a patrol listens to.

    - ``ready(is_ready: bool)``
    - ``navigation_status(location: str, status: str, id: int, description: str)``
    - ``position(x: float, y: float)``
    """

    def __init__(self) -> None:
        self.ready = EventHub("ready")
        self.navigation_status = EventHub("navigation_status")
        self.position = EventHub("position")

    @property
    def listener_count(self) -> int:
        return len(self.ready) + len(self.navigation_status) + len(self.position)
