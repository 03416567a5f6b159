"""Tests for goal inference and goal-progress analysis."""

from datetime import datetime, timedelta, timezone

import pytest

from devark.copilot.goals import (
    PROGRESS_DEBOUNCE_SECONDS,
    GoalProgressAnalyzer,
    GoalService,
    completion_signals,
    sample_interactions,
)
from devark.core import CURSOR, Response
from devark.sessions import SessionManager

from conftest import FakeProvider

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def manager(state):
    manager = SessionManager(state)
    manager.sync_from_source(CURSOR, "/Users/dev/alpha", "conv-1", timestamp=T0)
    return manager


def _prompt(manager, i):
    manager.on_prompt_detected(f"prompt {i}", T0 + timedelta(minutes=i), CURSOR, "conv-1", prompt_id=f"p{i}")


class TestCompletionSignals:
    def test_signals_need_bash_for_git(self):
        pushed = Response(id="r1", source=CURSOR, timestamp=T0, response="git push origin main done, all tests pass",
                          tool_calls=[{"name": "Bash"}])
        assert completion_signals(pushed) == ["git_push", "tests_passed"]

        no_bash = Response(id="r2", source=CURSOR, timestamp=T0, response="you can git push now")
        assert completion_signals(no_bash) == []

    def test_empty(self):
        assert completion_signals(None) == []


class TestSampling:
    def test_keeps_first_and_last(self):
        items = list(range(20))
        picked = sample_interactions(items)
        assert picked[0] == 0
        assert picked[-1] == 19
        assert len(picked) == 8

    def test_short_lists_are_kept(self):
        assert sample_interactions([1, 2]) == [1, 2]


class TestGoalProgressAnalyzer:
    def test_parse_clamps_progress(self):
        result = GoalProgressAnalyzer(FakeProvider()).parse_response('{"progress": 140, "reasoning": "done"}')
        assert result.progress == 100

    def test_unparseable_is_zero(self):
        result = GoalProgressAnalyzer(FakeProvider()).parse_response("no idea")
        assert result.progress == 0


class TestGoalService:
    @pytest.mark.asyncio
    async def test_infer_goal(self, manager):
        _prompt(manager, 0)
        inference = await GoalService(manager, FakeProvider()).infer_goal()
        assert inference.suggested_goal == "Fix the login flow"
        assert inference.detected_theme == "Bug Fix"

    @pytest.mark.asyncio
    async def test_no_inference_when_goal_set(self, manager):
        _prompt(manager, 0)
        manager.set_goal("Already set")
        assert await GoalService(manager, FakeProvider()).infer_goal() is None

    @pytest.mark.asyncio
    async def test_analyze_progress_updates_session(self, manager):
        _prompt(manager, 0)
        service = GoalService(manager, FakeProvider())

        result = await service.analyze_progress()

        session = manager.get_active_session()
        assert result.progress == 40
        assert session.goal_progress == 40
        assert session.custom_name == "Login fix"
        assert session.goal == "Fix the login flow"

    @pytest.mark.asyncio
    async def test_no_prompts(self, manager):
        result = await GoalService(manager, FakeProvider()).analyze_progress()
        assert result.progress == 0

    @pytest.mark.asyncio
    async def test_should_analyze_cadence(self, manager):
        clock = FakeClock()
        service = GoalService(manager, FakeProvider(), clock=clock)
        session = manager.get_active_session()
        assert service.should_analyze(session) is False

        _prompt(manager, 0)
        assert service.should_analyze(session) is True
        await service.analyze_progress()

        _prompt(manager, 1)
        clock.now += PROGRESS_DEBOUNCE_SECONDS + 1
        assert service.should_analyze(session) is False

        _prompt(manager, 2)
        _prompt(manager, 3)
        assert service.should_analyze(session) is True

    def test_goal_status(self, manager):
        service = GoalService(manager, FakeProvider())
        assert service.get_goal_status()["hasGoal"] is False
        service.set_goal("Ship it")
        status = service.get_goal_status()
        assert status["hasGoal"] is True
        assert status["goalText"] == "Ship it"
        service.clear_goal()
        assert service.get_goal_status()["hasGoal"] is False
