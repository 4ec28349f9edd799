"""Kachaka navigation client with asynchronous status events.

``go_to`` and ``turn_by`` return immediately.  A single watcher thread
starts the queued commands over gRPC, polls pose and command state, and
reports through :class:`~patrol_core.events.PlatformEvents`:

- ``navigation_status(location, status, id, description)``: ``start`` once
  the robot accepted the move, then exactly one terminal ``complete`` or
  ``abort`` per request, matched by command_id.
- ``position(x, y)`` every poll.
- ``ready(bool)`` on the first successful poll and on connection-health
  transitions.
"""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from dataclasses import dataclass
from typing import Optional

from kachaka_api.generated import kachaka_api_pb2 as pb2

from .config import SpeedLevel
from .connection import ConnectionState, KachakaConnection
from .error_handling import call_with_retry, describe_error
from .events import PlatformEvents

logger = logging.getLogger(__name__)

STATUS_START = "start"
STATUS_COMPLETE = "complete"
STATUS_ABORT = "abort"

_RUNNING_STATES = (pb2.COMMAND_STATE_RUNNING, pb2.COMMAND_STATE_PENDING)


@dataclass
class _Request:
    kind: str
    request_id: int
    location: str = ""
    degrees: int = 0
    speed_level: SpeedLevel = SpeedLevel.SLOW


@dataclass
class _InFlight:
    command_id: str
    location: str
    request_id: int
    started: float


class KachakaNavigation:
    """Non-blocking navigation for one Kachaka robot.

    Usage::

        conn = KachakaConnection.get("192.168.50.133")
        nav = KachakaNavigation(conn)
        nav.events.navigation_status.subscribe(print)
        nav.start()
        nav.go_to("Kitchen")
        ...
        nav.stop()
    """

    def __init__(
        self,
        conn: KachakaConnection,
        *,
        events: Optional[PlatformEvents] = None,
        poll_interval: float = 0.5,
        monitor_interval: float = 5.0,
        start_timeout: float = 10.0,
        retry_delay: float = 1.0,
        nav_timeout: float = 600.0,
    ) -> None:
        self._conn = conn
        self.events = events if events is not None else PlatformEvents()
        self._poll_interval = poll_interval
        self._monitor_interval = monitor_interval
        self._start_timeout = start_timeout
        self._retry_delay = retry_delay
        self._nav_timeout = nav_timeout

        self._requests: queue.Queue[Optional[_Request]] = queue.Queue()
        self._request_seq = 0
        self._lock = threading.Lock()
        self._inflight: Optional[_InFlight] = None
        self._ready: Optional[bool] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the watcher thread and the health watcher. No-op if already running."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._watch_loop, daemon=True, name="nav-watcher")
        self._thread.start()
        self._conn.watch_health(
            interval=self._monitor_interval,
            on_change=self._on_connection_state,
        )
        logger.info("KachakaNavigation started (poll=%.2fs)", self._poll_interval)

    def stop(self) -> None:
        """Stop the watcher thread. In-flight robot commands are not cancelled."""
        if not self.is_running:
            return
        self._stop_event.set()
        self._requests.put(None)
        assert self._thread is not None
        self._thread.join(timeout=max(self._poll_interval * 3, self._start_timeout))
        if self._thread.is_alive():
            logger.warning("Navigation watcher did not stop within timeout")
        else:
            logger.info("KachakaNavigation stopped")
        self._conn.stop_watching()
        with self._lock:
            self._inflight = None

    # ── Commands ─────────────────────────────────────────────────────

    def go_to(self, location: str, speed_level: SpeedLevel = SpeedLevel.SLOW) -> int:
        """Queue a move to a saved location. Returns the request id used in status events."""
        request = _Request("go_to", self._next_request_id(), location=location, speed_level=speed_level)
        self._requests.put(request)
        logger.debug("Queued go_to %s (request %d)", location, request.request_id)
        return request.request_id

    def turn_by(self, degrees: int, speed: float = 1.0) -> None:
        """Queue an in-place rotation (positive = counter-clockwise).

        Fire-and-forget.  The Kachaka picks its own rotation speed, so
        *speed* is only logged.
        """
        request = _Request("turn_by", self._next_request_id(), degrees=degrees)
        self._requests.put(request)
        logger.debug("Queued turn_by %d° (speed=%.2f)", degrees, speed)

    def tilt_head(self, degrees: int, speed: float) -> None:
        """The Kachaka has no tiltable head; the request is logged only."""
        logger.info("tilt_head(%d, %.2f): not supported on Kachaka, ignored", degrees, speed)

    def hide_status_overlay(self) -> None:
        """The Kachaka has no on-screen status bar; logged only."""
        logger.info("hide_status_overlay: no status overlay on Kachaka, ignored")

    # ── Watcher loop ─────────────────────────────────────────────────

    def _watch_loop(self) -> None:
        """Background thread: run queued commands, poll pose and command state."""
        while not self._stop_event.is_set():
            try:
                request = self._requests.get(timeout=self._poll_interval)
            except queue.Empty:
                request = None
            if self._stop_event.is_set():
                break
            if request is not None:
                self._handle_request(request)
                continue
            self._poll_pose()
            self._poll_command()

    def _handle_request(self, request: _Request) -> None:
        if request.kind == "go_to":
            self._start_move(request)
        elif request.kind == "turn_by":
            self._start_turn(request)

    def _start_move(self, request: _Request) -> None:
        location_id = self._conn.resolve_location(request.location)
        cmd = pb2.Command(
            move_to_location_command=pb2.MoveToLocationCommand(
                target_location_id=location_id
            )
        )
        title = f"patrol: {request.location} ({request.speed_level.value})"
        try:
            resp = self._start_command(cmd, cancel_all=True, title=title)
        except Exception as exc:
            self._emit_status(request.location, STATUS_ABORT, request.request_id, describe_error(exc))
            return
        if not resp.result.success:
            self._emit_status(
                request.location,
                STATUS_ABORT,
                request.request_id,
                self._describe_error_code(resp.result.error_code),
            )
            return
        with self._lock:
            superseded, self._inflight = self._inflight, _InFlight(
                command_id=resp.command_id,
                location=request.location,
                request_id=request.request_id,
                started=time.perf_counter(),
            )
        # cancel_all=True replaced the previous move; it still owes a terminal status
        if superseded is not None:
            self._emit_status(superseded.location, STATUS_ABORT, superseded.request_id, "superseded")
        logger.info("Moving to %s (command %s)", request.location, resp.command_id)
        self._emit_status(request.location, STATUS_START, request.request_id, "")

    def _start_turn(self, request: _Request) -> None:
        cmd = pb2.Command(
            rotate_in_place_command=pb2.RotateInPlaceCommand(
                angle_radian=math.radians(request.degrees)
            )
        )
        try:
            resp = self._start_command(cmd, cancel_all=False, title="patrol sweep")
        except Exception as exc:
            logger.warning("turn_by %d° failed to start: %s", request.degrees, describe_error(exc))
            return
        if not resp.result.success:
            logger.warning(
                "turn_by %d° rejected: %s",
                request.degrees,
                self._describe_error_code(resp.result.error_code),
            )

    def _start_command(self, command: pb2.Command, *, cancel_all: bool, title: str):
        request = pb2.StartCommandRequest(command=command, cancel_all=cancel_all, title=title)
        return call_with_retry(
            self._conn.client.stub.StartCommand,
            request,
            deadline=time.perf_counter() + self._start_timeout,
            retry_delay=self._retry_delay,
        )

    def _poll_pose(self) -> None:
        try:
            pose = self._conn.client.get_robot_pose()
        except Exception:
            logger.debug("Pose poll error", exc_info=True)
            return
        self._set_ready(True)
        self.events.position.emit(pose.x, pose.y)

    def _poll_command(self) -> None:
        with self._lock:
            inflight = self._inflight
        if inflight is None:
            return

        stub = self._conn.client.stub
        try:
            state_resp = stub.GetCommandState(pb2.GetRequest())
        except Exception:
            logger.debug("Command state poll error", exc_info=True)
            return

        # Check result when: state left RUNNING/PENDING, OR
        # a different command replaced ours (command_id changed).
        if (
            state_resp.state not in _RUNNING_STATES
            or state_resp.command_id != inflight.command_id
        ):
            try:
                result_resp = stub.GetLastCommandResult(pb2.GetRequest())
            except Exception:
                logger.debug("Last command result poll error", exc_info=True)
                return
            if result_resp.command_id == inflight.command_id:
                if result_resp.result.success:
                    self._finish(inflight, STATUS_COMPLETE, "")
                else:
                    self._finish(
                        inflight,
                        STATUS_ABORT,
                        self._describe_error_code(result_resp.result.error_code),
                    )
                return
            logger.debug(
                "command_id mismatch: ours=%s, got=%s — continuing poll",
                inflight.command_id,
                result_resp.command_id,
            )

        if time.perf_counter() - inflight.started > self._nav_timeout:
            self._finish(inflight, STATUS_ABORT, "TIMEOUT")

    def _finish(self, inflight: _InFlight, status: str, description: str) -> None:
        with self._lock:
            if self._inflight is not inflight:
                return
            self._inflight = None
        self._emit_status(inflight.location, status, inflight.request_id, description)

    # ── Events ───────────────────────────────────────────────────────

    def _emit_status(self, location: str, status: str, request_id: int, description: str) -> None:
        if status == STATUS_ABORT:
            logger.warning("Navigation to %s aborted: %s", location, description or "(no detail)")
        self.events.navigation_status.emit(location, status, request_id, description)

    def _set_ready(self, ready: bool) -> None:
        with self._lock:
            if self._ready == ready:
                return
            self._ready = ready
        self.events.ready.emit(ready)

    def _on_connection_state(self, state: ConnectionState) -> None:
        self._set_ready(state == ConnectionState.CONNECTED)

    # ── Internal ─────────────────────────────────────────────────────

    def _next_request_id(self) -> int:
        with self._lock:
            self._request_seq += 1
            return self._request_seq

    def _describe_error_code(self, error_code: int) -> str:
        """``error_code=N`` plus the robot's title for it when available."""
        desc = ""
        try:
            definitions = self._conn.client.get_robot_error_code()
            if error_code in definitions:
                info = definitions[error_code]
                desc = getattr(info, "title_en", "") or getattr(info, "title", "") or ""
        except Exception:
            logger.debug("Failed to fetch error description for %d", error_code)
        return f"error_code={error_code}" + (f": {desc}" if desc else "")
