"""Passive robot position observer.

Has no control authority: the patrol never reads it to make decisions.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)
telemetry_logger = logging.getLogger("patrol_core.telemetry")


@dataclass
class RobotPosition:
    """Last known position on the map."""
    x: float = 0.0
    y: float = 0.0
    last_updated: float = 0.0


class PositionTracker:
    """Keeps the latest position and emits a telemetry record per update."""

    def __init__(self, on_record: Optional[Callable[[dict], None]] = None) -> None:
        self._on_record = on_record
        self._position = RobotPosition()
        self._lock = threading.Lock()
        self._updates = 0

    @property
    def position(self) -> RobotPosition:
        """Thread-safe snapshot of the last known position."""
        with self._lock:
            return copy.copy(self._position)

    @property
    def updates(self) -> int:
        return self._updates

    def on_position_changed(self, x: float, y: float) -> None:
        now = time.time()
        with self._lock:
            self._position = RobotPosition(x=x, y=y, last_updated=now)
            self._updates += 1
        record = {"event": "position", "x": x, "y": y, "timestamp": now}
        telemetry_logger.debug("position x=%.3f y=%.3f", x, y)
        if self._on_record is not None:
            try:
                self._on_record(record)
            except Exception:
                logger.warning("on_record callback raised an exception", exc_info=True)
