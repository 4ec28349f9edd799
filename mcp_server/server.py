"""MCP Server for Kachaka patrols — thin wrapper around patrol_core.

Each tool delegates to a :class:`~patrol_core.session.PatrolSession` kept
per robot.  Run with: ``patrol-mcp`` or ``python -m mcp_server.server``.

Transport: stdio.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from patrol_core.config import PatrolConfig
from patrol_core.connection import KachakaConnection
from patrol_core.errors import PatrolError
from patrol_core.session import PatrolSession
from patrol_core.waypoints import WaypointStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

mcp = FastMCP(
    "kachaka-patrol",
    instructions=(
        "Waypoint patrol tools for Kachaka robots. All tools require an ``ip`` "
        "parameter (e.g. '192.168.1.100' or '192.168.1.100:26400'). "
        "Port 26400 is appended automatically when omitted."
    ),
)

_sessions: dict[str, PatrolSession] = {}

_REUSED_SESSION_NOTE = (
    "existing session resumed; output_dir, home_waypoint, settle_delay and "
    "periodic_capture keep their original values until close_patrol"
)


def _session_key(ip: str) -> str:
    return KachakaConnection._normalise_target(ip)


# ── Connection ───────────────────────────────────────────────────────

@mcp.tool()
def ping_robot(ip: str) -> dict:
    """Test gRPC connectivity and return serial number + current pose."""
    return KachakaConnection.get(ip).ping()


@mcp.tool()
def list_waypoints(ip: str) -> dict:
    """Saved locations the patrol would visit, in order."""
    try:
        return {"ok": True, "waypoints": WaypointStore(KachakaConnection.get(ip)).list_waypoints()}
    except PatrolError as exc:
        return {"ok": False, "error": str(exc)}


# ── Patrol ───────────────────────────────────────────────────────────

@mcp.tool()
def start_patrol(
    ip: str,
    output_dir: str = "patrol_photos",
    home_waypoint: str = "home base",
    settle_delay: float = 10.0,
    periodic_capture: bool = True,
) -> dict:
    """Start patrolling every saved location with an 8-step photo sweep at each.

    Photos are written to ``output_dir`` on the machine running this server.
    The settings only apply when the robot has no session yet; an existing
    session is resumed as it was configured, and the result carries a
    ``note`` saying so.  Call ``close_patrol`` first to change them.
    """
    key = _session_key(ip)
    session = _sessions.get(key)
    if session is not None:
        result = dict(session.begin())
        result["note"] = _REUSED_SESSION_NOTE
        return result
    config = PatrolConfig(home_waypoint=home_waypoint, settle_delay=settle_delay)
    try:
        session = PatrolSession.create(ip, output_dir, config, periodic=periodic_capture)
    except ValueError as exc:
        return {"ok": False, "error": str(exc)}
    _sessions[key] = session
    return session.begin()


@mcp.tool()
def stop_patrol(ip: str) -> dict:
    """Pause the patrol.  The robot finishes any move already in progress."""
    session = _sessions.get(_session_key(ip))
    if session is None:
        return {"ok": True, "message": "no patrol to stop"}
    return session.pause()


@mcp.tool()
def close_patrol(ip: str) -> dict:
    """Stop the patrol and release its background threads."""
    session = _sessions.pop(_session_key(ip), None)
    if session is None:
        return {"ok": True, "message": "no patrol to close"}
    return session.close()


@mcp.tool()
def get_patrol_status(ip: str) -> dict:
    """Patrol state, current waypoint, sweep progress, position and photo counts."""
    session = _sessions.get(_session_key(ip))
    if session is None:
        return {"ok": False, "error": "patrol not started"}
    return session.status()


@mcp.tool()
def tilt_head(ip: str, degrees: int, speed: float = 0.5) -> dict:
    """Tilt the robot head (-25..55 degrees, speed 0..1).  Requires ``start_patrol`` first."""
    session = _sessions.get(_session_key(ip))
    if session is None:
        return {"ok": False, "error": "patrol not started"}
    return session.controller.tilt_head(degrees, speed)


# ── Entry point ──────────────────────────────────────────────────────


def main():
    """Console entry point for ``patrol-mcp`` command."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
