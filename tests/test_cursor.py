"""Tests for the Cursor backend."""

import sqlite3
from datetime import timedelta
from unittest.mock import patch

from devark.backends.cursor import CursorSessionSource, count_prompts, is_transient_error, normalize_message
from devark.provider import READ_ERROR, RECOVERABLE_ERROR


class TestCursorSessionSource:
    """Tests for CursorSessionSource."""

    def test_is_available(self, cursor_db, tmp_path):
        assert CursorSessionSource(cursor_db).is_available() is True
        assert CursorSessionSource(tmp_path / "nope.vscdb").is_available() is False

    def test_default_path_comes_from_env(self):
        assert CursorSessionSource().is_available() is False

    def test_read_sessions(self, cursor_db):
        result = CursorSessionSource(cursor_db).read_sessions()

        assert result.errors == []
        assert [s.id for s in result.sessions] == [
            "cursor-comp-inline", "cursor-comp-conversation", "cursor-comp-headers",
        ]

    def test_inline_messages(self, cursor_db, session_start):
        session = CursorSessionSource(cursor_db).get_session("comp-inline")

        assert [m.role for m in session.messages] == ["user", "assistant", "user", "assistant"]
        assert session.messages[0].timestamp == session_start
        assert session.project_path == "/Users/dev/alpha"
        assert session.project_name == "alpha"
        assert session.duration == 300
        assert session.last_activity == session_start + timedelta(minutes=5)
        assert session.metadata["name"] == "Fix auth bug"
        assert session.metadata["schemaVersion"] == 3
        assert session.original_id == "comp-inline"

    def test_conversation_layout_without_workspace(self, cursor_db):
        session = CursorSessionSource(cursor_db).get_session("comp-conversation")

        assert [m.content for m in session.messages] == ["What does this regex do?", "It matches ISO dates."]
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.messages[0].timestamp is None
        assert session.project_name == "Unknown Workspace"
        assert session.duration == 0

    def test_header_bubbles(self, cursor_db):
        session = CursorSessionSource(cursor_db).get_session("comp-headers")

        assert [(m.role, m.content) for m in session.messages] == [
            ("user", "Rename the beta module"),
            ("assistant", "Renamed beta to gamma."),
        ]
        assert session.metadata["promptCount"] == 2

    def test_missing_composer(self, cursor_db):
        source = CursorSessionSource(cursor_db)
        assert source.get_session("nope") is None
        assert source.get_session("comp-empty") is None

    def test_project_filter(self, cursor_db):
        result = CursorSessionSource(cursor_db).read_sessions(project_path="/users/dev/beta")
        assert [s.id for s in result.sessions] == ["cursor-comp-headers"]

    def test_since_and_limit(self, cursor_db, session_start):
        source = CursorSessionSource(cursor_db)
        assert len(source.read_sessions(since=session_start + timedelta(minutes=5)).sessions) == 2
        assert len(source.read_sessions(limit=1).sessions) == 1

    def test_empty_database_is_recoverable(self, empty_cursor_db):
        result = CursorSessionSource(empty_cursor_db).read_sessions()
        assert result.sessions == []
        assert result.errors[0].code == RECOVERABLE_ERROR

    def test_missing_database(self, tmp_path):
        result = CursorSessionSource(tmp_path / "nope.vscdb").read_sessions()
        assert result.errors[0].code == READ_ERROR

    def test_busy_database_is_retried(self, cursor_db):
        delays = []
        source = CursorSessionSource(cursor_db, sleep=delays.append)
        real_connect = source._connect
        calls = {"n": 0}

        def flaky_connect():
            calls["n"] += 1
            if calls["n"] == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_connect()

        with patch.object(source, "_connect", side_effect=flaky_connect):
            session = source.get_session("comp-inline")

        assert session is not None
        assert len(delays) == 1

    def test_permanent_error_is_reported(self, cursor_db):
        source = CursorSessionSource(cursor_db)
        with patch.object(source, "_connect", side_effect=sqlite3.OperationalError("no such table: cursorDiskKV")):
            result = source.read_sessions()
        assert result.sessions == []
        assert result.errors[0].recoverable is True


class TestHelpers:
    def test_transient_errors(self):
        assert is_transient_error(sqlite3.OperationalError("database is locked")) is True
        assert is_transient_error(sqlite3.DatabaseError("database disk image is malformed")) is True
        assert is_transient_error(sqlite3.OperationalError("no such table")) is False

    def test_normalize_message(self):
        assert normalize_message({"role": "system", "content": "x"}) is None
        assert normalize_message({"role": "user", "content": "   "}) is None
        assert normalize_message({"type": 2, "text": " hi "}).role == "assistant"
        assert normalize_message({"role": "system", "text": "bubble"}, bubble=True).role == "user"

    def test_count_prompts(self):
        assert count_prompts({"messages": [{}, {}]}) == 2
        assert count_prompts({"fullConversationHeadersOnly": [{"type": 1}, {"type": 2}]}) == 1
        assert count_prompts({"promptCount": 7}) == 7
