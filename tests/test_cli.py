"""Tests for the patrol-run CLI (patrol_toolkit.cli)."""

from __future__ import annotations

import signal
from unittest.mock import MagicMock, patch

import pytest

from patrol_core.config import PatrolConfig, SpeedLevel
from patrol_toolkit.cli import build_parser, config_from_args, main


class TestArguments:
    def test_defaults_match_patrol_config(self):
        args = build_parser().parse_args(["192.168.1.10"])
        config = config_from_args(args)
        assert config == PatrolConfig()
        assert args.output_dir == "patrol_photos"
        assert args.camera == "front"
        assert args.no_periodic is False

    def test_overrides(self):
        args = build_parser().parse_args([
            "192.168.1.10",
            "--home-waypoint", "Dock",
            "--settle-delay", "3",
            "--turns", "4",
            "--turn-degrees", "90",
            "--speed", "high",
            "--tilt", "15",
            "--capture-interval", "2.5",
        ])
        config = config_from_args(args)
        assert config.home_waypoint == "Dock"
        assert config.settle_delay == 3.0
        assert config.turns_per_sweep == 4
        assert config.turn_degrees == 90
        assert config.speed_level is SpeedLevel.HIGH
        assert config.head_tilt == (15, 0.5)
        assert config.capture_min_interval == 2.5

    def test_invalid_value_rejected(self):
        args = build_parser().parse_args(["192.168.1.10", "--turn-interval", "0"])
        with pytest.raises(ValueError, match="turn_interval"):
            config_from_args(args)

    def test_unknown_speed_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["192.168.1.10", "--speed", "ludicrous"])


class TestMain:
    @patch("patrol_toolkit.cli.signal.signal")
    @patch("patrol_toolkit.cli.PatrolSession")
    def test_runs_until_signal(self, mock_session_cls, mock_signal):
        handlers = {}
        mock_signal.side_effect = lambda sig, handler: handlers.__setitem__(sig, handler)
        session = MagicMock()

        def begin():
            handlers[signal.SIGINT](signal.SIGINT, None)
            return {"ok": True, "waypoints": ["A", "B"]}

        session.begin.side_effect = begin
        mock_session_cls.create.return_value = session

        assert main(["192.168.1.10", "--no-periodic", "--camera", "back"]) == 0

        args, kwargs = mock_session_cls.create.call_args
        assert args[0] == "192.168.1.10"
        assert args[1] == "patrol_photos"
        assert kwargs == {"camera": "back", "periodic": False}
        assert set(handlers) == {signal.SIGINT, signal.SIGTERM}
        session.close.assert_called_once()

    @patch("patrol_toolkit.cli.signal.signal")
    @patch("patrol_toolkit.cli.PatrolSession")
    def test_start_failure_returns_1(self, mock_session_cls, mock_signal, caplog):
        session = MagicMock()
        session.begin.return_value = {"ok": False, "error": "no saved locations on 1.2.3.4:26400"}
        mock_session_cls.create.return_value = session

        assert main(["1.2.3.4"]) == 1
        assert "Cannot start patrol: no saved locations" in caplog.text
        session.close.assert_called_once()

    @patch("patrol_toolkit.cli.PatrolSession")
    def test_bad_config_exits_before_connecting(self, mock_session_cls):
        with pytest.raises(SystemExit) as info:
            main(["1.2.3.4", "--settle-delay", "-1"])
        assert info.value.code == 2
        mock_session_cls.create.assert_not_called()
