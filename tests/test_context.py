"""Tests for prompt context gathering."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from devark.context import (
    ContextBuilder,
    extract_entities,
    extract_project_summary,
    extract_tech_stack,
    load_workspace_info,
    merge_snippets,
    snippet_from_file,
    snippets_for_files,
    techs_for_dependencies,
)
from devark.copilot.base_tool import CodeSnippet
from devark.core import CURSOR, Response
from devark.sessions import SessionManager

T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
APP_SOURCE = "import os\n\n\ndef helper():\n    pass\n\n\ndef handle_login(user):\n    return user\n"


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "proj"
    root.mkdir()
    (root / "app.py").write_text(APP_SOURCE, encoding="utf-8")
    return root


class TestPromptExtraction:
    def test_tech_stack(self):
        assert extract_tech_stack("Add a pytest for the FastAPI route") == ["FastAPI", "Pytest"]

    def test_entities(self):
        entities = {e.name: e.kind for e in extract_entities(
            "Update handleSubmit in src/LoginForm.tsx and class AuthService"
        )}
        assert entities["src/LoginForm.tsx"] == "file"
        assert entities["AuthService"] == "class"
        assert entities["handleSubmit"] == "function"


class TestWorkspace:
    def test_summary_from_top_heading(self):
        text = "# Proj\n\nA tool for X.\nMore text.\n\n## Details\n\nIgnored."
        assert extract_project_summary(text) == "A tool for X. More text."

    def test_overview_heading_wins(self):
        text = "# Proj\n\nIntro.\n\n## Overview\n\nThe overview text.\n"
        assert extract_project_summary(text) == "The overview text."

    def test_no_summary(self):
        assert extract_project_summary("- just\n- a list") is None

    def test_dependency_names(self):
        assert techs_for_dependencies(["react", "@types/node", "React-DOM", "left-pad"]) == ["React", "TypeScript"]

    def test_load_from_pyproject(self, workspace):
        (workspace / "pyproject.toml").write_text(
            '[project]\nname = "x"\ndependencies = ["fastapi>=0.100", "httpx"]\n'
            '[project.optional-dependencies]\ntest = ["pytest"]\n',
            encoding="utf-8",
        )
        info = load_workspace_info(workspace)
        assert info.tech_stack == ["FastAPI", "HTTPX", "Pytest"]
        assert info.summary is None


class TestSnippets:
    def test_snippet_around_entity(self, workspace):
        snippet = snippet_from_file(workspace / "app.py", "handle_login", root=workspace)
        assert snippet.file_path == "app.py"
        assert snippet.entity_name == "handle_login"
        assert snippet.relevant_code.startswith("def handle_login")

    def test_missing_entity(self, workspace):
        assert snippet_from_file(workspace / "app.py", "nowhere", root=workspace) is None

    def test_snippets_for_files(self, workspace):
        snippets = snippets_for_files(["app.py", "/nonexistent/x.py"], workspace)
        assert [s.file_path for s in snippets] == ["app.py"]
        assert snippets_for_files(["app.py"], None) == []

    def test_merge_dedupes_and_caps(self):
        primary = [CodeSnippet("a", "src/a.py", "...")]
        secondary = [CodeSnippet("a.py", "./src/a.py", "..."), CodeSnippet("A", "src/b.py", "...")]
        secondary += [CodeSnippet(f"e{i}", f"f{i}.py", "...") for i in range(10)]

        merged = merge_snippets(primary, secondary)

        assert merged[0].entity_name == "a"
        assert "src/b.py" not in [s.file_path for s in merged]
        assert len(merged) == 6


class TestContextBuilder:
    def test_gather_without_session(self, state, workspace):
        context = ContextBuilder(SessionManager(state), workspace_root=workspace).gather("fix handle_login in app.py")

        assert "Python" in context.tech_stack
        assert [s.file_path for s in context.code_snippets] == ["app.py"]
        assert context.first_interactions == []

    @pytest.mark.asyncio
    async def test_build_times_out(self, state, workspace):
        builder = ContextBuilder(SessionManager(state), workspace_root=workspace, timeout=0)
        assert await builder.build("anything") is None


@pytest.fixture
def active_manager(state):
    manager = SessionManager(state)
    manager.sync_from_source(CURSOR, "/Users/dev/alpha", "conv-1", timestamp=T0)
    manager.on_prompt_detected("fix handle_login", T0, CURSOR, "conv-1", prompt_id="p0")
    manager.add_response(Response(id="r0", source=CURSOR, timestamp=T0, response="Fixed the bug in app.py",
                                  files_modified=["app.py"], conversation_id="conv-1"), "p0")
    return manager


class TestSessionSnapshot:
    def test_snapshot_is_detached_from_session(self, active_manager, workspace):
        builder = ContextBuilder(active_manager, workspace_root=workspace)
        snapshot = builder.snapshot()

        active_manager.on_prompt_detected("later", T0 + timedelta(minutes=5), CURSOR, "conv-1", prompt_id="p1")
        with patch.object(active_manager, "get_active_session", side_effect=AssertionError("live read")):
            context = builder.gather_workspace("anything", snapshot)

        assert [i.prompt for i in context.last_interactions] == ["fix handle_login"]
        assert snapshot.modified_files == ["app.py"]
        assert [s.file_path for s in context.code_snippets] == ["app.py"]

    @pytest.mark.asyncio
    async def test_build_reads_session_on_the_loop(self, active_manager, workspace):
        builder = ContextBuilder(active_manager, workspace_root=workspace)
        original = builder.snapshot
        threads = []

        def recording_snapshot():
            threads.append(threading.get_ident())
            return original()

        with patch.object(builder, "snapshot", recording_snapshot):
            context = await builder.build("fix handle_login")

        assert threads == [threading.get_ident()]
        assert context.goal is None
        assert context.first_interactions[0].files_modified == ["app.py"]
