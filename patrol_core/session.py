"""PatrolSession — host-side wiring of one patrolling robot.

Bundles everything a front end needs (connection, scheduler, navigation
watcher, camera, controller, periodic capture) behind three calls that
match the operator's buttons: ``begin``, ``pause`` and ``close``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .capture import PeriodicCapture, PhotoCapture
from .config import PatrolConfig
from .connection import KachakaConnection
from .controller import PatrolController
from .navigation import KachakaNavigation
from .position import PositionTracker
from .scheduler import Scheduler
from .waypoints import WaypointStore

logger = logging.getLogger(__name__)


class PatrolSession:
    """One robot, one patrol.

    Usage::

        session = PatrolSession.create("192.168.50.133", "photos")
        session.begin()
        ...
        session.pause()
        session.close()
    """

    def __init__(
        self,
        controller: PatrolController,
        navigation: KachakaNavigation,
        scheduler: Scheduler,
        periodic_capture: Optional[PeriodicCapture] = None,
        capture: Optional[PhotoCapture] = None,
        connection: Optional[KachakaConnection] = None,
    ) -> None:
        self.controller = controller
        self.navigation = navigation
        self.scheduler = scheduler
        self.periodic_capture = periodic_capture
        self.capture = capture
        self.connection = connection
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    @classmethod
    def create(
        cls,
        target: str,
        output_dir: str,
        config: Optional[PatrolConfig] = None,
        *,
        camera: str = "front",
        periodic: bool = True,
        on_photo: Optional[Callable[[str], None]] = None,
        on_position: Optional[Callable[[dict], None]] = None,
        timeout: float = 5.0,
    ) -> PatrolSession:
        """Connect to *target* and build a ready-to-start session."""
        config = config if config is not None else PatrolConfig()
        config.validate()

        conn = KachakaConnection.get(target, timeout=timeout)
        scheduler = Scheduler()
        navigation = KachakaNavigation(conn)
        capture = PhotoCapture(conn, output_dir, camera=camera, on_photo=on_photo)
        controller = PatrolController(
            navigation,
            WaypointStore(conn),
            capture,
            scheduler=scheduler,
            tracker=PositionTracker(on_record=on_position),
            config=config,
        )
        periodic_capture = None
        if periodic:
            periodic_capture = PeriodicCapture(
                capture,
                scheduler,
                min_interval=config.capture_min_interval,
                poll_interval=config.capture_poll_interval,
            )

        session = cls(controller, navigation, scheduler, periodic_capture, capture, conn)
        session.open()
        return session

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_started(self) -> bool:
        return self._started

    def open(self) -> None:
        """Register listeners and start background threads."""
        self.controller.init_patrol()
        self.scheduler.start()
        self.navigation.start()
        tilt = self.controller.config.head_tilt
        if tilt is not None:
            self.controller.tilt_head(*tilt)

    def begin(self) -> dict:
        """Start the patrol and, if configured, periodic capture."""
        with self._lock:
            if self._closed:
                return {"ok": False, "error": "session closed"}
            # an aborted patrol leaves the session started but the controller inactive
            if self._started and self.controller.snapshot.active:
                return {"ok": False, "error": "patrol already in progress"}
            result = self.controller.start_patrolling()
            if not result["ok"]:
                return result
            self._started = True
        if self.periodic_capture is not None:
            self.periodic_capture.start()
        return result

    def pause(self) -> dict:
        """Stop periodic capture and the patrol.  No-op if not started."""
        with self._lock:
            if not self._started:
                return {"ok": True, "message": "patrol not started"}
            self._started = False
        if self.periodic_capture is not None:
            self.periodic_capture.stop()
        self.controller.stop_patrolling()
        logger.info("Patrol paused")
        return {"ok": True, "message": "patrol paused"}

    def close(self) -> dict:
        """Tear everything down and release the robot connection.  Idempotent."""
        with self._lock:
            if self._closed:
                return {"ok": True, "message": "already closed"}
            self._closed = True
            self._started = False
        if self.periodic_capture is not None:
            self.periodic_capture.stop()
        self.controller.destroy_patrol()
        self.navigation.stop()
        self.scheduler.stop()
        self.scheduler.cancel_all()
        if self.connection is not None:
            KachakaConnection.release(self.connection.target)
        logger.info("Patrol session closed")
        return {"ok": True, "message": "patrol closed"}

    def status(self) -> dict:
        """Patrol snapshot plus position and capture counters."""
        snap = self.controller.snapshot
        pos = self.controller.tracker.position
        result = {"ok": True, **snap.to_dict()}
        result["position"] = {"x": pos.x, "y": pos.y, "last_updated": pos.last_updated}
        result["session_started"] = self._started
        if self.capture is not None:
            result["captures"] = self.capture.stats
        return result
