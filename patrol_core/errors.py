"""Exception taxonomy for the patrol layer.

None of these cross a public :class:`~patrol_core.controller.PatrolController`
operation.  They are raised by collaborators (waypoint store, validation)
or internally, caught at the controller boundary, logged, and turned into
a ``{"ok": False, "error": ...}`` result.
"""

from __future__ import annotations


class PatrolError(Exception):
    """Base class for every patrol-layer failure."""


class ConfigurationError(PatrolError):
    """The robot is not set up for patrolling (recoverable)."""


class EmptyStoreError(ConfigurationError):
    """No saved locations to patrol."""


class WaypointStoreError(PatrolError):
    """Waypoints could not be fetched from the robot."""


class NavigationAbortError(PatrolError):
    """The platform aborted navigation to a waypoint."""

    def __init__(self, location: str, description: str = "") -> None:
        self.location = location
        self.description = description
        msg = f"navigation to {location!r} aborted"
        if description:
            msg += f": {description}"
        super().__init__(msg)


class ValidationError(PatrolError):
    """Host input outside the accepted range."""


class CollaboratorFailure(PatrolError):
    """Capture or upload failed inside a collaborator."""


class StaleCallbackError(PatrolError):
    """A timer fired for a patrol generation that is no longer current."""
