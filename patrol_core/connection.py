"""Pooled gRPC link to a Kachaka robot.

One ``KachakaConnection`` per robot is shared by the waypoint store, the
navigation client and the camera.  Its health watcher pings the robot in
the background; CONNECTED/DISCONNECTED transitions are what the
navigation client turns into "robot ready" events.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

import grpc
from kachaka_api import KachakaApiClient
from kachaka_api.generated.kachaka_api_pb2_grpc import KachakaApiStub

from patrol_core.error_handling import describe_error
from patrol_core.interceptors import TimeoutInterceptor

logger = logging.getLogger(__name__)

DEFAULT_PORT = 26400


class ConnectionState(enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class KachakaConnection:
    """Lazily-connected, shared link to one robot.

    Usage::

        conn = KachakaConnection.get("192.168.1.100")
        names = conn.fetch_locations()          # ["Kitchen", "home base"]
        conn.resolve_location("Kitchen")        # "L01"
        KachakaConnection.release("192.168.1.100")
    """

    _pool: dict[str, KachakaConnection] = {}
    _pool_lock = threading.Lock()

    def __init__(self, target: str, timeout: float = 5.0):
        self.target = self._normalise_target(target)
        self.timeout = timeout
        self._client: Optional[KachakaApiClient] = None
        self._connect_lock = threading.Lock()

        # name → id, in robot order
        self._location_ids: dict[str, str] = {}
        self._location_lock = threading.Lock()

        self._state = ConnectionState.CONNECTED
        self._health_lock = threading.Lock()
        self._on_change: Optional[Callable[[ConnectionState], None]] = None
        self._watcher: Optional[threading.Thread] = None
        self._watch_stop = threading.Event()

    # ── Pool ─────────────────────────────────────────────────────────

    @classmethod
    def get(cls, target: str, timeout: float = 5.0) -> KachakaConnection:
        """Shared connection for *target*; created and connected on first use."""
        key = cls._normalise_target(target)
        with cls._pool_lock:
            conn = cls._pool.get(key)
            if conn is None:
                conn = cls._pool[key] = cls(key, timeout)
        conn._connect()
        return conn

    @classmethod
    def release(cls, target: str) -> None:
        """Forget the pooled connection for *target* and stop its health watcher."""
        with cls._pool_lock:
            conn = cls._pool.pop(cls._normalise_target(target), None)
        if conn is not None:
            conn.stop_watching()
            logger.info("Released connection to %s", conn.target)

    @classmethod
    def clear_pool(cls) -> None:
        with cls._pool_lock:
            cls._pool.clear()

    @property
    def client(self) -> KachakaApiClient:
        self._connect()
        assert self._client is not None
        return self._client

    # ── Queries ──────────────────────────────────────────────────────

    def ping(self) -> dict:
        """Serial number and pose, or ``{"ok": False, "error": ...}``."""
        try:
            sdk = self.client
            serial = sdk.get_robot_serial_number()
            pose = sdk.get_robot_pose()
        except Exception as exc:
            return {"ok": False, "error": describe_error(exc)}
        return {
            "ok": True,
            "serial": serial,
            "pose": {"x": pose.x, "y": pose.y, "theta": pose.theta},
        }

    def fetch_locations(self) -> list[str]:
        """Saved location names in robot order.  RPC errors propagate."""
        locations = self.client.get_locations()
        ids = {loc.name: loc.id for loc in locations}
        with self._location_lock:
            self._location_ids = ids
        logger.info("%s has %d saved locations", self.target, len(ids))
        return [loc.name for loc in locations]

    def resolve_location(self, name: str) -> str:
        """Location id for *name*.  Ids and unknown names are returned unchanged."""
        with self._location_lock:
            loc_id = self._location_ids.get(name)
            known_id = name in self._location_ids.values()
        if loc_id is not None:
            return loc_id
        if not known_id:
            logger.warning("Unknown location %r on %s", name, self.target)
        return name

    # ── Health watcher ───────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        with self._health_lock:
            return self._state

    def watch_health(
        self,
        interval: float = 5.0,
        on_change: Optional[Callable[[ConnectionState], None]] = None,
    ) -> None:
        """Ping every *interval* seconds; call *on_change* on each transition."""
        if self._watcher is not None and self._watcher.is_alive():
            return
        self._on_change = on_change
        self._watch_stop.clear()
        self._watcher = threading.Thread(
            target=self._watch,
            args=(interval,),
            daemon=True,
            name=f"health-{self.target}",
        )
        self._watcher.start()
        logger.info("Watching health of %s every %.1fs", self.target, interval)

    def stop_watching(self) -> None:
        if self._watcher is None:
            return
        self._watch_stop.set()
        self._watcher.join(timeout=self.timeout + 5.0)
        self._watcher = None
        self._on_change = None

    def _watch(self, interval: float) -> None:
        while not self._watch_stop.wait(interval):
            ok = self.ping()["ok"]
            self._update_state(ConnectionState.CONNECTED if ok else ConnectionState.DISCONNECTED)

    def _update_state(self, state: ConnectionState) -> None:
        with self._health_lock:
            if state is self._state:
                return
            self._state = state
            on_change = self._on_change
        logger.info("%s is now %s", self.target, state.value)
        if on_change is None:
            return
        try:
            on_change(state)
        except Exception:
            logger.warning("Health change listener raised", exc_info=True)

    # ── Internal ─────────────────────────────────────────────────────

    def _connect(self) -> None:
        if self._client is not None:
            return
        with self._connect_lock:
            if self._client is not None:
                return
            logger.info("Connecting to Kachaka at %s", self.target)
            client = KachakaApiClient(self.target)
            # unary calls get a deadline so a dropped robot cannot hang the watcher
            channel = grpc.intercept_channel(
                grpc.insecure_channel(self.target),
                TimeoutInterceptor(self.timeout),
            )
            client.stub = KachakaApiStub(channel)
            self._client = client
        try:
            self._client.get_robot_serial_number()
        except Exception as exc:
            logger.warning("%s did not answer the first ping: %s", self.target, describe_error(exc))

    @staticmethod
    def _normalise_target(target: str) -> str:
        return target if ":" in target else f"{target}:{DEFAULT_PORT}"
