"""Tests for the hook-captured session model."""

from datetime import datetime, timedelta, timezone

import pytest

from devark.core import CURSOR, Response, project_id_for
from devark.sessions import (
    MAX_RESPONSES_PER_SESSION,
    PROMPT_ADDED,
    RESPONSE_TEXT_LIMIT,
    SESSION_CREATED,
    SessionManager,
)

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager(state):
    return SessionManager(state)


def _seed(manager, source_session_id="conv-1", path="/Users/dev/alpha"):
    session_id = manager.sync_from_source(CURSOR, path, source_session_id, timestamp=T0)
    return manager.get_session(session_id)


class TestSyncFromSource:
    def test_creates_project_and_session(self, manager):
        session = _seed(manager)
        project = manager.get_project(project_id_for("/Users/dev/alpha"))
        assert project.name == "alpha"
        assert project.sessions == [session]
        assert session.platform == CURSOR
        assert session.source_session_id == "conv-1"
        assert manager.active_session_id == session.id

    def test_reuses_session_for_same_source_id(self, manager):
        first = _seed(manager)
        again = _seed(manager)
        assert first.id == again.id
        assert manager.get_stats()["totalSessions"] == 1

    def test_project_id_ignores_case_and_separators(self, manager):
        _seed(manager, "conv-1", "C:\\Users\\Dev\\Alpha")
        _seed(manager, "conv-2", "c:/users/dev/alpha")
        assert len(manager.get_all_projects()) == 1


class TestPrompts:
    def test_prompt_added_newest_first(self, manager):
        session = _seed(manager)
        manager.on_prompt_detected("first", T0, CURSOR, "conv-1", prompt_id="p1")
        manager.on_prompt_detected("second", T0 + timedelta(minutes=1), CURSOR, "conv-1", prompt_id="p2")
        assert [p.id for p in session.prompts] == ["p2", "p1"]
        assert session.prompt_count == 2
        assert session.last_activity_time == T0 + timedelta(minutes=1)

    def test_tool_markers_are_not_counted(self, manager):
        session = _seed(manager)
        manager.on_prompt_detected("[Tool result]", T0, CURSOR, "conv-1")
        manager.on_prompt_detected("Fix it", T0, CURSOR, "conv-1")
        assert len(session.prompts) == 2
        assert session.prompt_count == 1
        assert manager.get_project(session.project_id).total_prompts == 1

    def test_without_source_session_id(self, manager):
        assert manager.on_prompt_detected("hello", T0, CURSOR, None) == ""

    def test_unknown_source_session_creates_fallback_project(self, manager):
        prompt_id = manager.on_prompt_detected("hello", T0, CURSOR, "brand-new", prompt_id="p1")
        assert prompt_id == "p1"
        session, _ = manager.find_prompt("p1")
        assert session.source_session_id == "brand-new"

    def test_score_updates_average(self, manager):
        _seed(manager)
        manager.on_prompt_detected("a", T0, CURSOR, "conv-1", prompt_id="p1")
        manager.on_prompt_detected("b", T0, CURSOR, "conv-1", prompt_id="p2")
        manager.update_prompt_score("p1", 6.0, {"total": 6.0})
        manager.update_prompt_score("p2", 8.0, enhanced_text="better", enhanced_score=9.0)
        session, prompt = manager.find_prompt("p2")
        assert session.average_score == 7.0
        assert prompt.enhanced_text == "better"
        assert prompt.text == "b"
        assert manager.update_prompt_score("missing", 5.0) is False

    def test_add_prompt_requires_active_session(self, manager):
        with pytest.raises(RuntimeError):
            manager.add_prompt("hello")


class TestResponses:
    def test_response_links_to_newest_prompt(self, manager):
        session = _seed(manager)
        manager.on_prompt_detected("a", T0, CURSOR, "conv-1", prompt_id="p1")
        manager.on_prompt_detected("b", T0 + timedelta(seconds=5), CURSOR, "conv-1", prompt_id="p2")
        manager.add_response(Response(id="r1", source=CURSOR, timestamp=T0, conversation_id="conv-1"))
        assert session.responses[0].prompt_id == "p2"

    def test_response_text_is_truncated(self, manager):
        session = _seed(manager)
        manager.add_response(Response(id="r1", source=CURSOR, timestamp=T0, response="x" * 5000,
                                      conversation_id="conv-1"))
        assert len(session.responses[0].response) == RESPONSE_TEXT_LIMIT

    def test_caller_response_is_untouched(self, manager):
        session = _seed(manager)
        manager.on_prompt_detected("a", T0, CURSOR, "conv-1", prompt_id="p1")
        response = Response(id="r1", source=CURSOR, timestamp=T0, response="x" * 5000, conversation_id="conv-1")

        manager.add_response(response)

        assert len(response.response) == 5000
        assert response.prompt_id is None
        assert session.responses[0] is not response
        assert session.responses[0].prompt_id == "p1"

    def test_responses_are_capped(self, manager):
        session = _seed(manager)
        for i in range(MAX_RESPONSES_PER_SESSION + 10):
            manager.add_response(Response(id=f"r{i}", source=CURSOR, timestamp=T0 + timedelta(seconds=i),
                                          conversation_id="conv-1"))
        assert len(session.responses) == MAX_RESPONSES_PER_SESSION
        assert session.responses[0].id == f"r{MAX_RESPONSES_PER_SESSION + 9}"

    def test_response_without_session_is_dropped(self):
        manager = SessionManager()
        manager.add_response(Response(id="r1", source=CURSOR, timestamp=T0))
        assert manager.get_stats()["totalSessions"] == 0

    def test_interactions_are_oldest_first(self, manager):
        _seed(manager)
        for i in range(4):
            manager.on_prompt_detected(f"prompt {i}", T0 + timedelta(minutes=i), CURSOR, "conv-1", prompt_id=f"p{i}")
        manager.add_response(Response(id="r3", source=CURSOR, timestamp=T0, conversation_id="conv-1"), "p3")

        last = manager.get_last_interactions(2)
        first = manager.get_first_interactions(2)

        assert [i.prompt.id for i in last] == ["p2", "p3"]
        assert last[1].response.id == "r3"
        assert [i.prompt.id for i in first] == ["p0", "p1"]


class TestLifecycle:
    def test_persists_through_state(self, manager, state):
        session = _seed(manager)
        manager.on_prompt_detected("hello", T0, CURSOR, "conv-1", prompt_id="p1")
        manager.set_goal("Ship login")

        restored = SessionManager(state)
        restored.load()

        copy = restored.get_session(session.id)
        assert copy.goal == "Ship login"
        assert copy.prompts[0].text == "hello"
        assert restored.active_session_id == session.id

    def test_update_session_protects_identity(self, manager):
        session = _seed(manager)
        manager.update_session(session.id, id="other", custom_name="Login work")
        assert session.id != "other"
        assert session.custom_name == "Login work"

    def test_complete_goal_requires_goal(self, manager):
        _seed(manager)
        with pytest.raises(RuntimeError):
            manager.complete_goal()

    def test_delete_session(self, manager):
        session = _seed(manager)
        assert manager.delete_session(session.id) is True
        assert manager.active_session_id is None
        assert manager.delete_session(session.id) is False

    def test_listeners(self, manager):
        events = []
        manager.subscribe(lambda event: events.append(event.type))
        _seed(manager)
        manager.on_prompt_detected("hello", T0, CURSOR, "conv-1")
        assert SESSION_CREATED in events
        assert PROMPT_ADDED in events
