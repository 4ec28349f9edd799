"""Tests for patrol_core.position."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

from patrol_core.position import PositionTracker, RobotPosition


class TestPositionTracker:
    def test_initial_position(self):
        tracker = PositionTracker()
        assert tracker.position == RobotPosition(0.0, 0.0, 0.0)
        assert tracker.updates == 0

    def test_update_overwrites(self):
        tracker = PositionTracker()
        tracker.on_position_changed(1.0, 2.0)
        tracker.on_position_changed(-3.5, 0.25)

        pos = tracker.position
        assert (pos.x, pos.y) == (-3.5, 0.25)
        assert pos.last_updated > 0
        assert tracker.updates == 2

    def test_position_is_a_copy(self):
        tracker = PositionTracker()
        tracker.on_position_changed(1.0, 2.0)
        tracker.position.x = 99.0
        assert tracker.position.x == 1.0

    def test_record_emitted_per_update(self):
        on_record = MagicMock()
        tracker = PositionTracker(on_record=on_record)

        tracker.on_position_changed(1.0, 2.0)

        record = on_record.call_args.args[0]
        assert record["event"] == "position"
        assert (record["x"], record["y"]) == (1.0, 2.0)
        assert record["timestamp"] == tracker.position.last_updated

    def test_record_callback_error_is_logged(self, caplog):
        tracker = PositionTracker(on_record=MagicMock(side_effect=IOError("sink closed")))
        with caplog.at_level(logging.WARNING, logger="patrol_core.position"):
            tracker.on_position_changed(1.0, 2.0)
        assert tracker.position.x == 1.0
        assert "on_record" in caplog.text

    def test_telemetry_logged_at_debug(self, caplog):
        tracker = PositionTracker()
        with caplog.at_level(logging.DEBUG, logger="patrol_core.telemetry"):
            tracker.on_position_changed(1.5, -2.0)
        assert "x=1.500 y=-2.000" in caplog.text
