"""patrol_core — waypoint patrol with photographic sweeps for Kachaka robots.

Shared by the ``patrol-run`` CLI and the MCP server.
"""

from .capture import PeriodicCapture, PhotoCapture
from .config import PatrolConfig, SpeedLevel
from .connection import ConnectionState, KachakaConnection
from .controller import PatrolController, PatrolSnapshot, PatrolState
from .events import EventHub, PlatformEvents
from .navigation import KachakaNavigation
from .position import PositionTracker, RobotPosition
from .scheduler import Scheduler, TimerHandle
from .session import PatrolSession
from .waypoints import WaypointStore

__all__ = [
    "ConnectionState",
    "EventHub",
    "KachakaConnection",
    "KachakaNavigation",
    "PatrolConfig",
    "PatrolController",
    "PatrolSession",
    "PatrolSnapshot",
    "PatrolState",
    "PeriodicCapture",
    "PhotoCapture",
    "PlatformEvents",
    "PositionTracker",
    "RobotPosition",
    "Scheduler",
    "SpeedLevel",
    "TimerHandle",
    "WaypointStore",
]
