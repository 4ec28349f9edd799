"""Tests for the MCP patrol tools (mcp_server.server)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from patrol_core.connection import KachakaConnection
from patrol_core.errors import EmptyStoreError
from mcp_server.server import (
    _session_key,
    _sessions,
    close_patrol,
    get_patrol_status,
    list_waypoints,
    ping_robot,
    start_patrol,
    stop_patrol,
    tilt_head,
)


@pytest.fixture(autouse=True)
def _clean_state():
    """Clear session dict and connection pool before/after each test."""
    _sessions.clear()
    KachakaConnection.clear_pool()
    yield
    _sessions.clear()
    KachakaConnection.clear_pool()


def _mock_session(begin_result=None):
    session = MagicMock()
    session.begin.return_value = begin_result or {"ok": True, "waypoints": ["A", "B"]}
    session.status.return_value = {"ok": True, "state": "navigating_to_waypoint"}
    session.pause.return_value = {"ok": True, "message": "patrol paused"}
    session.close.return_value = {"ok": True, "message": "patrol closed"}
    session.controller.tilt_head.return_value = {"ok": True, "degrees": 10, "speed": 0.5}
    return session


class TestSessionKey:
    def test_port_normalised(self):
        assert _session_key("1.2.3.4") == _session_key("1.2.3.4:26400") == "1.2.3.4:26400"


class TestConnectionTools:
    @patch("patrol_core.connection.KachakaApiClient")
    def test_ping_robot(self, mock_cls):
        client = MagicMock()
        client.get_robot_serial_number.return_value = "KCK-001"
        client.get_robot_pose.return_value = MagicMock(x=1.0, y=2.0, theta=0.0)
        mock_cls.return_value = client

        result = ping_robot("1.2.3.4")

        assert result["ok"] is True
        assert result["serial"] == "KCK-001"

    @patch("mcp_server.server.WaypointStore")
    @patch("mcp_server.server.KachakaConnection")
    def test_list_waypoints(self, mock_conn_cls, mock_store_cls):
        mock_store_cls.return_value.list_waypoints.return_value = ["A", "home base"]
        assert list_waypoints("1.2.3.4") == {"ok": True, "waypoints": ["A", "home base"]}

    @patch("mcp_server.server.WaypointStore")
    @patch("mcp_server.server.KachakaConnection")
    def test_list_waypoints_empty(self, mock_conn_cls, mock_store_cls):
        mock_store_cls.return_value.list_waypoints.side_effect = EmptyStoreError("no saved locations")
        assert list_waypoints("1.2.3.4") == {"ok": False, "error": "no saved locations"}


class TestPatrolTools:
    @patch("mcp_server.server.PatrolSession")
    def test_start_creates_session_once(self, mock_session_cls):
        session = _mock_session()
        mock_session_cls.create.return_value = session

        first = start_patrol("1.2.3.4", output_dir="shots", settle_delay=2.0)
        start_patrol("1.2.3.4:26400")

        assert first == {"ok": True, "waypoints": ["A", "B"]}
        mock_session_cls.create.assert_called_once()
        args, kwargs = mock_session_cls.create.call_args
        assert args[0] == "1.2.3.4"
        assert args[1] == "shots"
        assert args[2].settle_delay == 2.0
        assert kwargs == {"periodic": True}
        assert session.begin.call_count == 2
        assert _sessions["1.2.3.4:26400"] is session

    @patch("mcp_server.server.PatrolSession")
    def test_restart_reports_settings_kept(self, mock_session_cls):
        session = _mock_session()
        mock_session_cls.create.return_value = session
        start_patrol("1.2.3.4", settle_delay=2.0)

        result = start_patrol("1.2.3.4", home_waypoint="dock", settle_delay=30.0, periodic_capture=False)

        assert result["ok"] is True
        assert result["waypoints"] == ["A", "B"]
        assert "close_patrol" in result["note"]
        assert "settle_delay" in result["note"]
        mock_session_cls.create.assert_called_once()
        assert "note" not in session.begin.return_value

    @patch("mcp_server.server.PatrolSession")
    def test_start_with_bad_settings(self, mock_session_cls):
        mock_session_cls.create.side_effect = ValueError("settle_delay must be >= 0, got -1")
        result = start_patrol("1.2.3.4", settle_delay=-1)
        assert result["ok"] is False
        assert "settle_delay" in result["error"]
        assert _sessions == {}

    def test_tools_without_session(self):
        assert stop_patrol("1.2.3.4") == {"ok": True, "message": "no patrol to stop"}
        assert close_patrol("1.2.3.4") == {"ok": True, "message": "no patrol to close"}
        assert get_patrol_status("1.2.3.4") == {"ok": False, "error": "patrol not started"}
        assert tilt_head("1.2.3.4", 10) == {"ok": False, "error": "patrol not started"}

    def test_tools_delegate_to_session(self):
        session = _mock_session()
        _sessions["1.2.3.4:26400"] = session

        assert get_patrol_status("1.2.3.4")["state"] == "navigating_to_waypoint"
        assert tilt_head("1.2.3.4", 10, 0.5)["ok"] is True
        session.controller.tilt_head.assert_called_once_with(10, 0.5)
        assert stop_patrol("1.2.3.4")["message"] == "patrol paused"

    def test_close_removes_session(self):
        session = _mock_session()
        _sessions["1.2.3.4:26400"] = session

        assert close_patrol("1.2.3.4")["message"] == "patrol closed"

        session.close.assert_called_once()
        assert _sessions == {}
