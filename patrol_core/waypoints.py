"""Patrol waypoints, read from the robot's saved locations."""

from __future__ import annotations

import logging
import time

from .connection import KachakaConnection
from .error_handling import call_with_retry, describe_error
from .errors import EmptyStoreError, WaypointStoreError

logger = logging.getLogger(__name__)


class WaypointStore:
    """Ordered waypoint names for one robot.

    The list is fetched fresh on every :meth:`list_waypoints` call, which
    the patrol makes exactly once per start.
    """

    def __init__(
        self,
        conn: KachakaConnection,
        *,
        fetch_timeout: float = 10.0,
        retry_delay: float = 1.0,
    ) -> None:
        self._conn = conn
        self._fetch_timeout = fetch_timeout
        self._retry_delay = retry_delay

    def list_waypoints(self) -> list[str]:
        """Return saved location names in the robot's order.

        Raises:
            EmptyStoreError: the robot has no saved locations.
            WaypointStoreError: the robot could not be read before the deadline.
        """
        deadline = time.perf_counter() + self._fetch_timeout
        try:
            names = call_with_retry(
                self._conn.fetch_locations,
                deadline=deadline,
                retry_delay=self._retry_delay,
            )
        except Exception as exc:
            raise WaypointStoreError(
                f"could not read locations from {self._conn.target}: {describe_error(exc)}"
            ) from exc
        if not names:
            raise EmptyStoreError(f"no saved locations on {self._conn.target}")
        return names
