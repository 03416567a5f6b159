"""Tests for the Claude Code backend."""

import json
from datetime import timedelta

from devark.backends.claude_code import ClaudeCodeSessionSource, render_content, should_ignore_folder


class TestClaudeCodeSessionSource:
    """Tests for ClaudeCodeSessionSource."""

    def test_is_available(self, claude_projects, tmp_path):
        assert ClaudeCodeSessionSource(claude_projects).is_available() is True
        assert ClaudeCodeSessionSource(tmp_path / "nonexistent").is_available() is False

    def test_read_sessions_skips_agents_and_ignored_folders(self, claude_projects):
        result = ClaudeCodeSessionSource(claude_projects).read_sessions()

        assert result.errors == []
        assert [s.id for s in result.sessions] == ["-Users-dev-alpha/sess-1.jsonl/sess-1"]

    def test_session_fields(self, claude_projects, session_start):
        session = ClaudeCodeSessionSource(claude_projects).read_sessions().sessions[0]

        assert session.source == "claude_code"
        assert session.project_path == "/Users/dev/alpha"
        assert session.project_name == "alpha"
        assert session.claude_session_id == "sess-1"
        assert session.original_id == "sess-1"
        assert session.start_time == session_start
        assert session.last_activity == session_start + timedelta(minutes=7)
        assert session.duration == 7 * 60

    def test_messages_and_tool_markers(self, claude_projects):
        session = ClaudeCodeSessionSource(claude_projects).read_sessions().sessions[0]

        assert [m.role for m in session.messages] == ["user", "assistant", "user", "user", "assistant"]
        assert session.messages[1].content == "Fixed the check.\n[Tool: Edit]"
        assert session.messages[2].content == "[Tool result]"
        assert [m.content for m in session.user_prompts] == ["Fix the login bug in auth.py", "Add a regression test"]

    def test_metadata(self, claude_projects):
        metadata = ClaudeCodeSessionSource(claude_projects).read_sessions().sessions[0].metadata

        assert metadata["editedFiles"] == ["/Users/dev/alpha/auth.py"]
        assert metadata["files_edited"] == 1
        assert metadata["models"] == {"claude-sonnet": 2}
        assert metadata["primaryModel"] == "claude-sonnet"
        assert metadata["gitBranch"] == "main"

    def test_since_skips_untouched_files(self, claude_projects, session_start):
        source = ClaudeCodeSessionSource(claude_projects)
        assert source.read_sessions(since=session_start + timedelta(days=1)).sessions == []

    def test_project_filter(self, claude_projects):
        source = ClaudeCodeSessionSource(claude_projects)
        assert source.read_sessions(project_path="/Users/dev/other").sessions == []
        assert len(source.read_sessions(project_path="/Users/dev").sessions) == 1

    def test_missing_base(self, tmp_path):
        result = ClaudeCodeSessionSource(tmp_path / "nonexistent").read_sessions()
        assert result.sessions == []
        assert result.errors == []

    def test_file_without_messages(self, tmp_path):
        project = tmp_path / "projects" / "-Users-dev-gamma"
        project.mkdir(parents=True)
        (project / "s.jsonl").write_text(
            json.dumps({"sessionId": "s", "cwd": "/Users/dev/gamma", "timestamp": "2025-01-01T00:00:00Z"}) + "\n",
            encoding="utf-8",
        )
        assert ClaudeCodeSessionSource(tmp_path / "projects").read_sessions().sessions == []


class TestHelpers:
    def test_render_content(self):
        assert render_content("plain") == "plain"
        assert render_content(None) == ""
        assert render_content([
            {"type": "text", "text": "Look"},
            {"type": "image", "source": {}},
            {"type": "tool_use", "name": "Read"},
            {"type": "tool_result", "content": "..."},
        ]) == "Look\n[Tool: Read]\n[Tool result]"

    def test_ignored_folders(self):
        assert should_ignore_folder("-tmp-devark-hooks") is True
        assert should_ignore_folder("-Users-dev-temp-standup-x") is True
        assert should_ignore_folder("-Users-dev-alpha") is False
