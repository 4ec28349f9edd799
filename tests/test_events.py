"""Tests for patrol_core.events."""

from __future__ import annotations

from unittest.mock import MagicMock

from patrol_core.events import EventHub, PlatformEvents


class TestEventHub:
    def test_emit_reaches_every_listener(self):
        hub = EventHub("position")
        a, b = MagicMock(), MagicMock()
        hub.subscribe(a)
        hub.subscribe(b)

        hub.emit(1.0, 2.0)

        a.assert_called_once_with(1.0, 2.0)
        b.assert_called_once_with(1.0, 2.0)

    def test_unsubscribe_is_idempotent(self):
        hub = EventHub("ready")
        listener = MagicMock()
        unsubscribe = hub.subscribe(listener)

        unsubscribe()
        unsubscribe()
        hub.emit(True)

        listener.assert_not_called()
        assert len(hub) == 0

    def test_unsubscribe_only_removes_own_listener(self):
        hub = EventHub("ready")
        keep = MagicMock()
        hub.subscribe(keep)
        hub.subscribe(MagicMock())()
        hub.emit(True)
        keep.assert_called_once_with(True)
        assert len(hub) == 1

    def test_listener_error_is_isolated(self):
        hub = EventHub("navigation_status")
        after = MagicMock()
        hub.subscribe(MagicMock(side_effect=RuntimeError("bad listener")))
        hub.subscribe(after)

        hub.emit("A", "complete", 1, "")

        after.assert_called_once_with("A", "complete", 1, "")

    def test_listener_may_unsubscribe_during_emit(self):
        hub = EventHub("ready")
        calls = []
        holder = {}

        def once(value):
            calls.append(value)
            holder["unsubscribe"]()

        holder["unsubscribe"] = hub.subscribe(once)
        hub.emit(True)
        hub.emit(True)
        assert calls == [True]


class TestPlatformEvents:
    def test_listener_count_sums_hubs(self):
        events = PlatformEvents()
        assert events.listener_count == 0
        unsubscribers = [
            events.ready.subscribe(MagicMock()),
            events.navigation_status.subscribe(MagicMock()),
            events.position.subscribe(MagicMock()),
        ]
        assert events.listener_count == 3
        for unsubscribe in unsubscribers:
            unsubscribe()
        assert events.listener_count == 0

    def test_hubs_are_independent(self):
        events = PlatformEvents()
        listener = MagicMock()
        events.position.subscribe(listener)
        events.ready.emit(True)
        listener.assert_not_called()
