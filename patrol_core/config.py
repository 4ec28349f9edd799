"""Patrol tuning knobs."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class SpeedLevel(enum.Enum):
    """Navigation speed requested for each waypoint leg."""

    SLOW = "slow"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class PatrolConfig:
    """Timing and behaviour of a patrol.

    ``home_waypoint`` is matched case-insensitively against the location
    reported in a ``complete`` status; arriving there skips the sweep.
    ``head_tilt`` is an optional ``(degrees, speed)`` pair applied once
    when a session is created.
    """

    home_waypoint: str = "home base"
    settle_delay: float = 10.0
    turn_interval: float = 1.0
    turns_per_sweep: int = 8
    turn_degrees: int = 45
    turn_speed: float = 1.0
    speed_level: SpeedLevel = SpeedLevel.SLOW
    capture_min_interval: float = 5.0
    capture_poll_interval: float = 0.5
    head_tilt: Optional[tuple[int, float]] = None

    def validate(self) -> None:
        """Raise ``ValueError`` for settings the scheduler cannot honour."""
        if self.settle_delay < 0:
            raise ValueError(f"settle_delay must be >= 0, got {self.settle_delay}")
        for name in ("turn_interval", "capture_min_interval", "capture_poll_interval"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if self.turns_per_sweep < 0:
            raise ValueError(f"turns_per_sweep must be >= 0, got {self.turns_per_sweep}")

    def is_home(self, location: str) -> bool:
        return location.strip().lower() == self.home_waypoint.strip().lower()
