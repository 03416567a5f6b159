"""Tests for the event dispatcher."""

import pytest

from devark.events import ANALYSIS_COMPLETE, HOOK_STATUS, SCORE_RECEIVED, EventDispatcher


class TestEventDispatcher:
    def test_listener_receives_payload(self):
        dispatcher = EventDispatcher()
        seen = []
        dispatcher.on(SCORE_RECEIVED, seen.append)
        dispatcher.emit(SCORE_RECEIVED, {"score": 7.5})
        assert seen == [{"score": 7.5}]

    def test_unknown_event_type_is_rejected(self):
        with pytest.raises(ValueError):
            EventDispatcher().on("nope", lambda data: None)

    def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        seen = []
        off = dispatcher.on(HOOK_STATUS, seen.append)
        off()
        dispatcher.emit(HOOK_STATUS, {})
        assert seen == []
        assert dispatcher.listener_count(HOOK_STATUS) == 0

    def test_failing_listener_does_not_block_others(self):
        dispatcher = EventDispatcher()
        seen = []

        def broken(data):
            raise RuntimeError("boom")

        dispatcher.on(ANALYSIS_COMPLETE, broken)
        dispatcher.on(ANALYSIS_COMPLETE, seen.append)
        dispatcher.emit(ANALYSIS_COMPLETE, {"prompt": {}})
        assert seen == [{"prompt": {}}]

    def test_on_any(self):
        dispatcher = EventDispatcher()
        seen = []
        off = dispatcher.on_any(lambda event_type, data: seen.append(event_type))
        dispatcher.emit(SCORE_RECEIVED, {})
        dispatcher.emit(HOOK_STATUS, {})
        off()
        dispatcher.emit(HOOK_STATUS, {})
        assert seen == [SCORE_RECEIVED, HOOK_STATUS]
