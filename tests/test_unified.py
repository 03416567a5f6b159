"""Tests for merging hook-captured and externally read sessions."""

from datetime import datetime, timedelta, timezone

import pytest

from devark.backends.claude_code import ClaudeCodeSessionSource
from devark.backends.cursor import CursorSessionSource
from devark.core import CURSOR, Message, Project, Session, SourceSession, project_id_for
from devark.sessions import SessionManager
from devark.unified import UnifiedSessionService, build_projects, merge_projects, to_session, visible_projects

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager(state, session_start):
    manager = SessionManager(state)
    manager.sync_from_source(CURSOR, "/Users/dev/alpha", "comp-inline", timestamp=session_start)
    manager.on_prompt_detected("Fix the login bug in auth.py", session_start, CURSOR, "comp-inline", prompt_id="p1")
    return manager


@pytest.fixture
def service(manager, cursor_db, claude_projects):
    return UnifiedSessionService(
        manager, [CursorSessionSource(cursor_db), ClaudeCodeSessionSource(claude_projects)],
    )


def _source_session(session_id="cursor-abc", path="/Users/dev/alpha", messages=None):
    return SourceSession(
        id=session_id,
        source=CURSOR,
        project_path=path,
        start_time=T0,
        last_activity=T0 + timedelta(minutes=10),
        duration=600,
        messages=messages if messages is not None else [
            Message(role="user", content="first", timestamp=T0),
            Message(role="assistant", content="ok", timestamp=T0 + timedelta(minutes=1)),
            Message(role="user", content="second", timestamp=T0 + timedelta(minutes=5)),
        ],
        metadata={"editedFiles": ["auth.py"]},
    )


class TestToSession:
    def test_prompts_from_user_messages(self):
        session = to_session(_source_session(), "proj", now=T0)

        assert [p.id for p in session.prompts] == ["cursor-abc-p1", "cursor-abc-p0"]
        assert session.prompt_count == 2
        assert session.total_duration == 10
        assert session.source_session_id == "abc"
        assert session.metadata["files"] == ["auth.py"]
        assert session.is_active is True

    def test_old_session_is_inactive(self):
        assert to_session(_source_session(), "proj", now=T0 + timedelta(days=2)).is_active is False


class TestMerge:
    def test_external_projects_fold_into_hook_projects(self):
        hook = Project(id=project_id_for("/Users/dev/alpha"), name="alpha", path="/Users/dev/alpha")
        hook.sessions.append(Session(
            id="hook-1", project_id=hook.id, platform=CURSOR, start_time=T0, last_activity_time=T0,
            metadata={"sourceSessionId": "abc"},
        ))
        external = build_projects([_source_session("cursor-abc"), _source_session("cursor-def")], T0)

        merged = merge_projects([hook], external)

        assert len(merged) == 1
        assert [s.id for s in merged[0].sessions] == ["hook-1", "cursor-def"]
        assert hook.sessions[0].id == "hook-1"
        assert len(hook.sessions) == 1

    def test_visible_projects_drop_promptless_sessions(self):
        projects = build_projects([_source_session("cursor-empty", messages=[
            Message(role="user", content="[Tool result]", timestamp=T0),
        ])], T0)
        assert visible_projects(projects) == []


class TestUnifiedSessionService:
    def test_get_projects(self, service):
        projects = service.get_projects()

        by_name = {p.name: p for p in projects}
        assert set(by_name) == {"alpha", "beta", "Unknown Workspace"}
        alpha_ids = [s.id for s in by_name["alpha"].sessions]
        assert "cursor-comp-inline" not in alpha_ids
        assert "-Users-dev-alpha/sess-1.jsonl/sess-1" in alpha_ids
        assert len(alpha_ids) == 2

    def test_source_filter(self, service):
        projects = service.get_projects(sources=["claude_code"])
        assert [p.name for p in projects] == ["alpha"]
        assert [s.platform for s in projects[0].sessions] == ["claude_code"]

    def test_get_session(self, service):
        session = service.get_session("cursor-comp-headers")
        assert [p.text for p in session.prompts] == ["Rename the beta module"]
        assert service.get_session("nope") is None

    def test_goal_cache_applies_to_external_sessions(self, service):
        service.update_goal_progress_cache("cursor-comp-headers", progress=50, custom_name="Rename work")

        session = service.get_session("cursor-comp-headers")

        assert session.goal_progress == 50
        assert session.custom_name == "Rename work"
        assert session.goal is None

    def test_hook_goals_are_remembered(self, service, manager):
        manager.set_goal("Ship login")
        service.get_projects()
        hook_session = manager.get_active_session()
        assert service.get_cached_goal(hook_session).goal == "Ship login"

    def test_get_sessions_by_project(self, service):
        beta = project_id_for("/Users/dev/beta")
        assert [s.id for s in service.get_sessions(project_id=beta)] == ["cursor-comp-headers"]
        assert len(service.get_sessions(limit=2)) == 2

    def test_find_project_for_path(self, service):
        assert service.find_project_for_path("/users/dev/alpha").name == "alpha"

    def test_unavailable_sources_are_skipped(self, manager, tmp_path):
        service = UnifiedSessionService(manager, [CursorSessionSource(tmp_path / "nope.vscdb")])
        assert [p.name for p in service.get_projects()] == ["alpha"]
        assert service.last_errors == []
