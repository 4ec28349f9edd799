"""PatrolController — event-driven round-trip patrol with photo sweeps.

The controller walks the robot's saved locations in order, forever:

- ``start_patrolling`` fetches waypoints and sends the robot to the first.
- A ``complete`` status at a waypoint starts a sweep after a settle delay:
  8 × (turn 45° + capture), one per second.  The home/charging waypoint
  is passed through without a sweep.
- After the sweep the cursor moves on (wrapping) and the next ``go_to``
  is issued.
- An ``abort`` status parks the patrol in ``ABORTED`` until the next start.

All callbacks (platform events, timer ticks) run on one
:class:`~patrol_core.scheduler.Scheduler` thread and every entry point
holds the controller lock, so state, cursor and sweep progress are never
written concurrently.  Every scheduled tick carries the generation that
was current when it was scheduled; start, stop, abort and destroy bump
the generation, which turns older ticks into silent no-ops.

Public operations never raise: they log and return
``{"ok": bool, ...}`` like the rest of the toolkit.
"""

from __future__ import annotations

import copy
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .capture import PhotoCapture
from .config import PatrolConfig
from .errors import (
    NavigationAbortError,
    PatrolError,
    StaleCallbackError,
    ValidationError,
)
from .navigation import STATUS_ABORT, STATUS_COMPLETE, KachakaNavigation
from .position import PositionTracker
from .scheduler import Scheduler, TimerHandle
from .waypoints import WaypointStore

logger = logging.getLogger(__name__)

TILT_MIN_DEGREES = -25
TILT_MAX_DEGREES = 55


class PatrolState(enum.Enum):
    IDLE = "idle"
    NAVIGATING = "navigating_to_waypoint"
    SWEEPING = "performing_sweep"
    ABORTED = "aborted"


@dataclass
class PatrolSnapshot:
    """Copy of the controller's state at one instant."""
    state: PatrolState = PatrolState.IDLE
    active: bool = False
    cursor: int = 0
    target: Optional[str] = None
    turns_done: int = 0
    generation: int = 0
    waypoints: list[str] = field(default_factory=list)
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "active": self.active,
            "cursor": self.cursor,
            "target": self.target,
            "turns_done": self.turns_done,
            "generation": self.generation,
            "waypoints": list(self.waypoints),
            "last_error": self.last_error,
        }


class PatrolController:
    """Patrol state machine for one robot.

    Usage::

        sched = Scheduler()
        sched.start()
        ctrl = PatrolController(nav, WaypointStore(conn), PhotoCapture(conn, "photos"),
                                scheduler=sched)
        ctrl.init_patrol()
        ctrl.start_patrolling()
        ...
        ctrl.destroy_patrol()

    *navigation* needs ``go_to``, ``turn_by``, ``tilt_head``,
    ``hide_status_overlay`` and an ``events`` attribute
    (:class:`~patrol_core.events.PlatformEvents`).
    """

    def __init__(
        self,
        navigation: KachakaNavigation,
        waypoints: WaypointStore,
        capture: PhotoCapture,
        *,
        scheduler: Scheduler,
        tracker: Optional[PositionTracker] = None,
        config: Optional[PatrolConfig] = None,
    ) -> None:
        self._navigation = navigation
        self._store = waypoints
        self._capture = capture
        self._scheduler = scheduler
        self.tracker = tracker if tracker is not None else PositionTracker()
        self.config = config if config is not None else PatrolConfig()
        self.config.validate()

        self._lock = threading.RLock()
        self._state = PatrolState.IDLE
        self._active = False
        self._destroyed = False
        self._generation = 0
        self._waypoints: list[str] = []
        self._cursor = 0
        self._turns_done = 0
        self._last_error: Optional[PatrolError] = None
        self._sweep_timer: Optional[TimerHandle] = None
        self._request_id: Optional[int] = None
        self._subscriptions: list[Callable[[], None]] = []

    # ── Introspection ────────────────────────────────────────────────

    @property
    def state(self) -> PatrolState:
        with self._lock:
            return self._state

    @property
    def snapshot(self) -> PatrolSnapshot:
        """Thread-safe copy of state, cursor and sweep progress."""
        with self._lock:
            return PatrolSnapshot(
                state=self._state,
                active=self._active,
                cursor=self._cursor,
                target=self._target(),
                turns_done=self._turns_done,
                generation=self._generation,
                waypoints=copy.copy(self._waypoints),
                last_error=str(self._last_error) if self._last_error else None,
            )

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    # ── Event registration ───────────────────────────────────────────

    def init_patrol(self) -> dict:
        """Subscribe to ready, navigation-status and position events.

        Events are re-posted to the scheduler so they run on its thread.
        Idempotent.
        """
        with self._lock:
            if self._destroyed:
                logger.warning("init_patrol called after destroy_patrol")
                return {"ok": False, "error": "patrol destroyed"}
            if self._subscriptions:
                return {"ok": True, "message": "already initialised"}
            events = self._navigation.events
            self._subscriptions = [
                events.ready.subscribe(self._post(self.on_robot_ready)),
                events.navigation_status.subscribe(
                    self._post(self.on_navigation_status_changed, same_generation=True)
                ),
                events.position.subscribe(self._post(self.on_position_changed)),
            ]
        logger.info("Patrol listeners registered")
        return {"ok": True}

    def _post(self, handler: Callable[..., None], *, same_generation: bool = False) -> Callable[..., None]:
        """Listener that re-posts the event to the scheduler thread.

        Queued events are dropped once the patrol is destroyed.  With
        *same_generation*, they are also dropped if start, stop or abort
        happened between arrival and dispatch.
        """

        def post(*args) -> None:
            with self._lock:
                generation = self._generation if same_generation else None
            self._scheduler.call_soon(self._dispatch, handler, generation, args)

        return post

    def _dispatch(self, handler: Callable[..., None], generation: Optional[int], args: tuple) -> None:
        with self._lock:
            if self._destroyed:
                logger.debug("Dropping %s queued before destroy", handler.__name__)
                return
            if generation is not None and generation != self._generation:
                logger.debug(
                    "Dropping %s%r from generation %d (current %d)",
                    handler.__name__, args, generation, self._generation,
                )
                return
            handler(*args)

    # ── Host control surface ─────────────────────────────────────────

    def start_patrolling(self) -> dict:
        """Fetch waypoints and head for the first one."""
        with self._lock:
            if self._destroyed:
                logger.warning("start_patrolling called after destroy_patrol")
                return {"ok": False, "error": "patrol destroyed"}
            if self._active:
                logger.info("Already patrolling")
                return {"ok": False, "error": "already patrolling"}
            try:
                waypoints = self._store.list_waypoints()
            except PatrolError as exc:
                self._last_error = exc
                self._reset(PatrolState.IDLE)
                logger.warning("Cannot start patrol: %s", exc)
                return {"ok": False, "error": str(exc)}

            self._reset(PatrolState.NAVIGATING)
            self._waypoints = list(waypoints)
            self._cursor = 0
            self._active = True
            self._last_error = None
            logger.info("Patrol started over %d waypoints: %s", len(waypoints), waypoints)
            self._go_to_current()
            return {"ok": True, "waypoints": list(waypoints)}

    def stop_patrolling(self) -> dict:
        """Stop advancing.  A navigation already sent to the robot is not cancelled."""
        with self._lock:
            was_active = self._active
            self._reset(PatrolState.IDLE)
        if was_active:
            logger.info("Patrol stopped")
        return {"ok": True, "was_active": was_active}

    def destroy_patrol(self) -> dict:
        """Unsubscribe from every event and cancel every timer.  Idempotent."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
            self._reset(PatrolState.IDLE)
            first = not self._destroyed
            self._destroyed = True
        for unsubscribe in subscriptions:
            unsubscribe()
        if first:
            logger.info("Patrol destroyed (%d listeners removed)", len(subscriptions))
        return {"ok": True}

    def tilt_head(self, degrees: int, speed: float) -> dict:
        """Tilt the head to *degrees* (-25..55) at *speed* (0..1)."""
        try:
            self._validate_tilt(degrees, speed)
        except ValidationError as exc:
            logger.warning("tilt_head rejected: %s", exc)
            return {"ok": False, "error": str(exc)}
        self._navigation.tilt_head(degrees, speed)
        return {"ok": True, "degrees": degrees, "speed": speed}

    @staticmethod
    def _validate_tilt(degrees: int, speed: float) -> None:
        if not TILT_MIN_DEGREES <= degrees <= TILT_MAX_DEGREES:
            raise ValidationError(
                f"degrees must be within [{TILT_MIN_DEGREES}, {TILT_MAX_DEGREES}], got {degrees}"
            )
        if not 0.0 <= speed <= 1.0:
            raise ValidationError(f"speed must be within [0, 1], got {speed}")

    # ── Platform events ──────────────────────────────────────────────

    def on_robot_ready(self, ready: bool) -> None:
        if not ready:
            logger.info("Robot not ready")
            return
        logger.info("Robot ready")
        self._navigation.hide_status_overlay()

    def on_position_changed(self, x: float, y: float) -> None:
        self.tracker.on_position_changed(x, y)

    def on_navigation_status_changed(
        self,
        location: str,
        status: str,
        request_id: int = 0,
        description: str = "",
    ) -> None:
        """Central dispatcher for navigation status events.

        Statuses carrying a *request_id* other than the one returned by the
        last ``go_to`` belong to an earlier move and are ignored; ``0``
        means the platform did not say.
        """
        logger.debug("Navigation status: location=%s status=%s request=%s %s", location, status, request_id, description)
        with self._lock:
            if not self._active:
                logger.debug("Ignoring %s for %s: patrol inactive", status, location)
                return
            if request_id and request_id != self._request_id:
                logger.debug(
                    "Ignoring %s for %s: request %s is not the current one (%s)",
                    status, location, request_id, self._request_id,
                )
                return
            kind = status.lower()
            if kind == STATUS_ABORT:
                self._on_abort(location, description)
            elif kind == STATUS_COMPLETE:
                self._on_arrival(location)
            else:
                logger.debug("Ignoring status %r for %s", status, location)

    def _on_arrival(self, location: str) -> None:
        if self._state is not PatrolState.NAVIGATING:
            logger.warning("Ignoring complete for %s while %s", location, self._state.value)
            return
        if self.config.is_home(location):
            logger.info("Arrived at %s, skipping sweep", location)
            self._advance()
            return
        logger.info("Arrived at %s, sweep in %.1fs", location, self.config.settle_delay)
        self._state = PatrolState.SWEEPING
        self._turns_done = 0
        self._sweep_timer = self._scheduler.call_later(
            self.config.settle_delay, self._begin_sweep, self._generation
        )

    def _on_abort(self, location: str, description: str) -> None:
        error = NavigationAbortError(location, description)
        self._reset(PatrolState.ABORTED)
        self._last_error = error
        logger.warning("Patrol halted: %s", error)

    # ── Sweep ────────────────────────────────────────────────────────

    def _begin_sweep(self, generation: int) -> None:
        with self._lock:
            try:
                self._check_current(generation)
            except StaleCallbackError as exc:
                logger.debug("%s", exc)
                return
            self._sweep_timer = self._scheduler.call_repeating(
                self.config.turn_interval,
                self._sweep_tick,
                generation,
                initial_delay=0.0,
            )

    def _sweep_tick(self, generation: int) -> None:
        with self._lock:
            try:
                self._check_current(generation)
            except StaleCallbackError as exc:
                logger.debug("%s", exc)
                return
            if self._turns_done < self.config.turns_per_sweep:
                self._turn_and_capture()
                self._turns_done += 1
                return
            logger.info("Sweep at %s done, continuing patrol", self._target())
            self._cancel_sweep_timer()
            self._advance()

    def _check_current(self, generation: int) -> None:
        if (
            not self._active
            or generation != self._generation
            or self._state is not PatrolState.SWEEPING
        ):
            raise StaleCallbackError(
                f"stale sweep tick (generation {generation}, current {self._generation})"
            )

    def _turn_and_capture(self) -> None:
        self._navigation.turn_by(self.config.turn_degrees, self.config.turn_speed)
        try:
            self._capture.capture_photo()
        except Exception:
            logger.warning("capture_photo raised during sweep", exc_info=True)

    # ── Cursor ───────────────────────────────────────────────────────

    def _advance(self) -> None:
        self._cursor = (self._cursor + 1) % len(self._waypoints)
        self._state = PatrolState.NAVIGATING
        self._turns_done = 0
        self._go_to_current()

    def _go_to_current(self) -> None:
        target = self._waypoints[self._cursor]
        logger.info("Heading to %s (%d/%d)", target, self._cursor + 1, len(self._waypoints))
        self._request_id = self._navigation.go_to(target, self.config.speed_level)

    def _target(self) -> Optional[str]:
        if self._state is PatrolState.IDLE or not self._waypoints:
            return None
        return self._waypoints[self._cursor]

    # ── Internal ─────────────────────────────────────────────────────

    def _reset(self, state: PatrolState) -> None:
        """Leave the current patrol segment: invalidate timers, go to *state*."""
        self._cancel_sweep_timer()
        self._generation += 1
        self._active = False
        self._request_id = None
        self._turns_done = 0
        self._state = state

    def _cancel_sweep_timer(self) -> None:
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None
