"""Tests for response analysis and coaching."""

import json
from datetime import datetime, timezone

import pytest

from devark.copilot.coaching import (
    COOLDOWN,
    DUPLICATE,
    ERROR_RESPONSE,
    NO_SUGGESTIONS,
    THROTTLED,
    TOAST_NOT_NOW,
    CoachingConfig,
    CoachingService,
    fallback_suggestions,
    parse_suggestions,
)
from devark.copilot.response_analyzer import (
    analyze_response,
    determine_outcome,
    extract_entities,
    extract_topics,
    normalize_file_path,
)
from devark.core import CLAUDE_CODE, CURSOR, Response
from devark.llm import LLMManager
from devark.storage import StorageManager

from conftest import FakeProvider

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _response(response_id="r1", **kwargs):
    defaults = {
        "source": CURSOR,
        "timestamp": T0,
        "response": "Updated auth/login.py so expired tokens return 401.",
        "files_modified": ["auth/login.py"],
        "prompt_id": "p1",
    }
    defaults.update(kwargs)
    return Response(id=response_id, **defaults)


class TestResponseAnalyzer:
    def test_outcome(self):
        assert determine_outcome(_response(success=True)) == "success"
        assert determine_outcome(_response(success=False)) == "error"
        assert determine_outcome(_response(source=CLAUDE_CODE, reason="completed")) == "success"
        assert determine_outcome(_response(source=CLAUDE_CODE, reason="cancelled")) == "partial"
        assert determine_outcome(_response(source=CLAUDE_CODE, reason="error")) == "error"

    def test_topics(self):
        assert extract_topics("Fix the bug and add a test") == ["Testing", "Bug Fix", "Feature"]
        assert extract_topics("") == []

    def test_entities(self):
        response = _response(
            files_modified=["./src/app.py"],
            tool_calls=[{"name": "Edit", "arguments": {"file_path": "src/models.py"}}],
            tool_results=[{"tool": "Write", "result": "wrote: docs/guide.md"}],
            response="I also modified `config.yaml` and see https://example.com/a.html",
        )
        assert extract_entities(response) == ["src/app.py", "src/models.py", "docs/guide.md", "config.yaml"]

    def test_long_paths_are_shortened(self):
        path = "/very/long/path/that/goes/on/and/on/for/a/while/in/the/repo/module.py"
        assert normalize_file_path(path) == "repo/module.py"

    def test_summary_skips_headings_and_json(self):
        response = _response(response='# Summary\n{"ok": true}\nRefactored the login handler for clarity.')
        assert analyze_response(response).summary == "Refactored the login handler for clarity."

    def test_summary_from_files(self):
        analysis = analyze_response(_response(response="", files_modified=["a.py", "b.py"]))
        assert analysis.summary == "Completed changes to 2 files including a.py"


class TestParseSuggestions:
    def test_filters_and_normalizes(self):
        text = "Here you go:\n" + json.dumps([
            {"type": "test", "title": "Add a test", "suggestedPrompt": "Write a test", "confidence": 0.9},
            {"type": "bogus", "title": "Tidy up", "suggestedPrompt": "Tidy the module"},
            {"type": "test", "title": "Zero", "suggestedPrompt": "Nope", "confidence": 0},
            {"type": "test", "title": "Weak", "suggestedPrompt": "Maybe", "confidence": 0.1},
            {"type": "test", "suggestedPrompt": "No title"},
        ])

        suggestions = parse_suggestions(text, now_ms=42)

        assert [s.title for s in suggestions] == ["Add a test", "Tidy up"]
        assert suggestions[1].type == "follow_up"
        assert suggestions[1].confidence == 0.5
        assert suggestions[0].id == "suggestion-42-0"

    def test_zero_confidence_is_dropped(self):
        text = json.dumps([{"title": "t", "suggestedPrompt": "p", "confidence": 0}])
        assert parse_suggestions(text) == []
        assert parse_suggestions(text, min_confidence=0)[0].confidence == 0.5

    def test_malformed(self):
        assert parse_suggestions("no array here") == []
        assert parse_suggestions("[not json]") == []

    def test_max_suggestions(self):
        items = [{"title": f"t{i}", "suggestedPrompt": "p", "confidence": 0.8} for i in range(5)]
        assert len(parse_suggestions(json.dumps(items), max_suggestions=3)) == 3

    def test_fallback_suggestions(self):
        analysis = analyze_response(_response(response="Fixed the bug in auth/login.py"))
        titles = [s.title for s in fallback_suggestions(analysis)]
        assert titles == ["Add tests for changes", "Document the changes", "Verify the fix"]


class TestCoachingService:
    @pytest.mark.asyncio
    async def test_generates_coaching(self):
        seen = []
        service = CoachingService(provider=LLMManager([FakeProvider()]), clock=FakeClock())
        service.subscribe(seen.append)

        result = await service.process_response(_response())

        assert result.generated is True
        assert result.coaching.suggestions[0].type == "test"
        assert service.get_coaching_for_prompt("p1") is result.coaching
        assert seen == [result.coaching]

    @pytest.mark.asyncio
    async def test_min_interval_throttles(self):
        clock = FakeClock()
        service = CoachingService(provider=LLMManager([FakeProvider()]), clock=clock)

        assert (await service.process_response(_response("r1"))).generated is True
        clock.now += 60
        second = await service.process_response(_response("r2"))
        clock.now += CoachingConfig().min_interval
        third = await service.process_response(_response("r3"))

        assert second.generated is False
        assert second.reason == THROTTLED
        assert third.generated is True

    @pytest.mark.asyncio
    async def test_force_bypasses_throttle(self):
        clock = FakeClock()
        service = CoachingService(provider=LLMManager([FakeProvider()]), clock=clock)
        await service.process_response(_response("r1"))
        assert (await service.process_response(_response("r2"), force=True)).generated is True

    @pytest.mark.asyncio
    async def test_error_response_is_not_coached(self):
        provider = FakeProvider()
        service = CoachingService(provider=LLMManager([provider]), clock=FakeClock())
        result = await service.process_response(_response(success=False))
        assert result.reason == ERROR_RESPONSE
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_in_flight_response_is_skipped(self):
        service = CoachingService(provider=LLMManager([FakeProvider()]), clock=FakeClock())
        service._processing.add("r1")
        result = await service.process_response(_response("r1"))
        assert result.reason == DUPLICATE

    @pytest.mark.asyncio
    async def test_provider_failure_uses_fallback(self):
        service = CoachingService(provider=LLMManager([FakeProvider(error="down")]), clock=FakeClock())
        result = await service.process_response(_response())
        assert result.generated is True
        assert result.coaching.suggestions[0].title == "Add tests for changes"

    @pytest.mark.asyncio
    async def test_nothing_to_suggest(self):
        service = CoachingService(clock=FakeClock())
        result = await service.process_response(_response(response="Answered the question.", files_modified=[]))
        assert result.reason == NO_SUGGESTIONS
        assert service.is_processing("r1") is False

    @pytest.mark.asyncio
    async def test_not_now_starts_cooldown(self):
        clock = FakeClock()
        service = CoachingService(
            provider=LLMManager([FakeProvider()]), clock=clock, toast=lambda coaching: TOAST_NOT_NOW,
        )
        await service.process_response(_response("r1"))
        clock.now += CoachingConfig().min_interval + 1

        result = await service.process_response(_response("r2"))

        assert result.reason == COOLDOWN
        assert service.get_state().on_cooldown is True

    @pytest.mark.asyncio
    async def test_coaching_survives_restart(self, tmp_path):
        storage = StorageManager(tmp_path / "copilot")
        storage.initialize()
        service = CoachingService(provider=LLMManager([FakeProvider()]), storage=storage, clock=FakeClock())
        await service.process_response(_response())

        restored = CoachingService(storage=storage, clock=FakeClock())

        assert restored.cached_ids == ["p1"]
        coaching = restored.get_coaching_for_prompt("p1")
        assert coaching.response_id == "r1"
        assert coaching.suggestions[0].title == "Cover the expired-token path"

    def test_dismiss(self):
        service = CoachingService(clock=FakeClock())
        assert service.get_current_coaching() is None
        service.dismiss_all()
        assert service.current_prompt_id is None

    def test_unknown_setting(self):
        with pytest.raises(ValueError):
            CoachingService().update_config(nope=True)
