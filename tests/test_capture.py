"""Tests for the hook-side capture script."""

import io
import json
import os
from unittest.mock import patch

from click.testing import CliRunner

from devark.capture import (
    CONTINUE,
    MAX_RESPONSE_CHARS,
    claude_prompt_record,
    claude_response_record,
    cursor_prompt_record,
    cursor_response_record,
    last_assistant_message,
    main,
    read_input,
    write_drop_file,
)
from devark.watcher import is_drop_file


def _drops(hook_dir, prefix):
    return sorted(p for p in hook_dir.glob(f"{prefix}-*.json") if not p.name.startswith("latest-"))


class TestRecords:
    def test_cursor_prompt(self):
        record = cursor_prompt_record({
            "prompt": "fix it",
            "conversation_id": "c1",
            "generation_id": "g1",
            "workspace_roots": ["/Users/dev/alpha"],
            "model": "gpt-5",
        })
        assert record["id"].startswith("prompt-")
        assert record["source"] == "cursor"
        assert record["conversationId"] == "c1"
        assert record["workspaceRoots"] == ["/Users/dev/alpha"]
        assert record["timestamp"].endswith("Z")

    def test_cursor_response_truncates(self):
        record = cursor_response_record({
            "response": "x" * (MAX_RESPONSE_CHARS + 10),
            "tool_calls": [{"tool": "Edit", "params": {"path": "a.py"}}] * 12,
            "files_modified": [f"f{i}.py" for i in range(30)],
        }, is_stop=False)
        assert len(record["response"]) == MAX_RESPONSE_CHARS
        assert len(record["toolCalls"]) == 10
        assert record["toolCalls"][0] == {"name": "Edit", "arguments": {"path": "a.py"}}
        assert len(record["filesModified"]) == 20
        assert record["isFinal"] is False
        assert record["success"] is True

    def test_cursor_stop(self):
        record = cursor_response_record({"status": "completed", "loop_count": 2}, is_stop=True)
        assert record["isFinal"] is True
        assert record["hookType"] == "stop"
        assert record["stopReason"] == "completed"
        assert record["loopCount"] == 2
        assert record["success"] is True

    def test_claude_prompt(self):
        record = claude_prompt_record({"prompt": "hi", "session_id": "s1", "cwd": "/Users/dev/alpha"})
        assert record["sessionId"] == "s1"
        assert record["workspaceRoots"] == ["/Users/dev/alpha"]

    def test_claude_response_reads_transcript(self, tmp_path):
        transcript = tmp_path / "t.jsonl"
        transcript.write_text("\n".join([
            json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "first"}]}}),
            json.dumps({"type": "user", "message": {"content": "thanks"}}),
            json.dumps({"type": "assistant", "message": {"content": [
                {"type": "tool_use", "name": "Edit"}, {"type": "text", "text": "Done."},
            ]}}),
            "garbage",
        ]), encoding="utf-8")

        record = claude_response_record({"session_id": "s1", "transcript_path": str(transcript)})

        assert record["response"] == "Done."
        assert record["reason"] == "completed"
        assert record["success"] is True

    def test_missing_transcript(self, tmp_path):
        assert last_assistant_message(tmp_path / "nope.jsonl") == ""


class TestDropFiles:
    def test_write_drop_file(self, hook_dir):
        path = write_drop_file("prompt", "latest-prompt.json", {"id": "p1", "model": None}, hook_dir)
        assert json.loads(path.read_text(encoding="utf-8")) == {"id": "p1"}
        assert (hook_dir / "latest-prompt.json").exists()

    def test_drop_file_is_renamed_into_place(self, hook_dir):
        with patch("devark.capture.os.replace", wraps=os.replace) as replace:
            path = write_drop_file("prompt", "latest-prompt.json", {"id": "p1"}, hook_dir)

        temp, final = replace.call_args_list[0].args
        assert temp.name == f".tmp-{path.name}"
        assert final == path
        assert not is_drop_file(str(temp))
        assert list(hook_dir.glob(".tmp-*")) == []

    def test_read_input(self):
        assert read_input(io.StringIO('{"a": 1}')) == {"a": 1}
        assert read_input(io.StringIO("")) == {}
        assert read_input(io.StringIO("not json")) == {}
        assert read_input(io.StringIO("[1]")) == {}


class TestCommands:
    def test_cursor_prompt_always_continues(self, hook_dir):
        result = CliRunner().invoke(main, ["cursor-prompt"], input=json.dumps({"prompt": "fix it"}))

        assert result.exit_code == 0
        assert result.stdout.strip() == CONTINUE
        drops = _drops(hook_dir, "prompt")
        assert len(drops) == 1
        assert json.loads(drops[0].read_text(encoding="utf-8"))["prompt"] == "fix it"

    def test_cursor_stop_writes_final_file(self, hook_dir):
        result = CliRunner().invoke(main, ["cursor-stop"], input=json.dumps({"status": "aborted"}))
        assert result.stdout.strip() == CONTINUE
        record = json.loads(_drops(hook_dir, "cursor-response-final")[0].read_text(encoding="utf-8"))
        assert record["stopReason"] == "aborted"
        assert record["success"] is False

    def test_claude_prompt_is_silent(self, hook_dir):
        result = CliRunner().invoke(main, ["claude-prompt"], input=json.dumps({"prompt": "hi", "session_id": "s1"}))
        assert result.exit_code == 0
        assert result.stdout == ""
        assert len(_drops(hook_dir, "claude-prompt")) == 1

    def test_bad_input_still_continues(self):
        result = CliRunner().invoke(main, ["cursor-response"], input="{oops")
        assert result.exit_code == 0
        assert result.stdout.strip() == CONTINUE
