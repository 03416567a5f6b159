"""Hook-side capture script (``devark-hook``).

Claude Code and Cursor run one of these subcommands on each hook event, with
the event as JSON on stdin. Each subcommand writes a single drop file into
the hook directory for the watcher to consume, plus a ``latest-*.json``
pointer that the watcher skips. Capturing never blocks the agent: Cursor
always gets ``{"continue": true}`` on stdout, and failures are only logged.
"""

import asyncio
import json
import logging
import os
import secrets
import sys
import time
from pathlib import Path
from typing import Any

import click

from .config import get_hook_dir
from .core import CLAUDE_CODE, CURSOR, utcnow

logger = logging.getLogger(__name__)

MAX_RESPONSE_CHARS = 5000
MAX_TOOL_CALLS = 10
MAX_FILES_MODIFIED = 20
MAX_TOOL_RESULT_CHARS = 1000

CONTINUE = json.dumps({"continue": True})


def _millis() -> int:
    return int(time.time() * 1000)


def _record_id(prefix: str) -> str:
    return f"{prefix}-{_millis()}-{secrets.token_hex(3)}"


def _now() -> str:
    return utcnow().isoformat().replace("+00:00", "Z")


def read_input(stream=None) -> dict:
    """Parse the hook event from stdin; anything unparseable is an empty event."""
    raw = (stream or sys.stdin).read()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring malformed hook input: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def write_drop_file(prefix: str, latest_name: str, record: dict, hook_dir: Path | None = None) -> Path:
    """Write ``<prefix>-<ms>.json`` and refresh the ``latest`` pointer file."""
    hook_dir = hook_dir or get_hook_dir()
    hook_dir.mkdir(parents=True, exist_ok=True)
    body = json.dumps({k: v for k, v in record.items() if v is not None}, indent=2)
    path = hook_dir / f"{prefix}-{_millis()}.json"
    if path.exists():
        path = hook_dir / f"{prefix}-{_millis()}-{secrets.token_hex(2)}.json"
    _replace_into(path, body)
    _replace_into(hook_dir / latest_name, body)
    logger.debug("Wrote hook file %s", path.name)
    return path


def _replace_into(path: Path, body: str) -> None:
    """Write beside ``path`` under a name the watcher ignores, then rename into place."""
    tmp = path.with_name(f".tmp-{path.name}")
    tmp.write_text(body, encoding="utf-8")
    os.replace(tmp, path)


# ── Record builders ──────────────────────────────────────────────


def cursor_prompt_record(data: dict) -> dict:
    return {
        "id": _record_id("prompt"),
        "timestamp": _now(),
        "prompt": data.get("prompt") or "",
        "source": CURSOR,
        "attachments": list(data.get("attachments") or []),
        "conversationId": data.get("conversation_id"),
        "generationId": data.get("generation_id"),
        "model": data.get("model"),
        "cursorVersion": data.get("cursor_version"),
        "workspaceRoots": list(data.get("workspace_roots") or []),
        "userEmail": data.get("user_email"),
    }


def cursor_response_record(data: dict, is_stop: bool) -> dict:
    record = {
        "id": _record_id("cursor-response"),
        "timestamp": _now(),
        "source": CURSOR,
        "hookType": "stop" if is_stop else data.get("hook_event_name") or "afterAgentResponse",
        "isFinal": is_stop,
        "conversationId": data.get("conversation_id"),
        "generationId": data.get("generation_id"),
        "model": data.get("model"),
        "workspaceRoots": list(data.get("workspace_roots") or []),
        "cursorVersion": data.get("cursor_version"),
        "userEmail": data.get("user_email"),
    }
    if is_stop:
        record.update({
            "stopReason": data.get("status") or "error",
            "loopCount": data.get("loop_count") or 0,
            "response": "",
            "toolCalls": [],
            "filesModified": [],
            "success": data.get("status") == "completed",
        })
    else:
        record.update({
            "response": (data.get("response") or data.get("text") or "")[:MAX_RESPONSE_CHARS],
            "toolCalls": [
                {"name": tc.get("name") or tc.get("tool"), "arguments": tc.get("arguments") or tc.get("params") or {}}
                for tc in (data.get("tool_calls") or [])[:MAX_TOOL_CALLS]
                if isinstance(tc, dict)
            ],
            "filesModified": list(data.get("files_modified") or [])[:MAX_FILES_MODIFIED],
            "success": data.get("success") is not False,
        })
    return record


def claude_prompt_record(data: dict) -> dict:
    cwd = data.get("cwd")
    return {
        "id": _record_id("claude-prompt"),
        "timestamp": _now(),
        "prompt": data.get("prompt") or "",
        "source": CLAUDE_CODE,
        "sessionId": data.get("session_id"),
        "transcriptPath": data.get("transcript_path"),
        "cwd": cwd,
        "hookEventName": data.get("hook_event_name"),
        "attachments": [],
        "workspaceRoots": [cwd] if cwd else [],
    }


def claude_response_record(data: dict) -> dict:
    cwd = data.get("cwd")
    reason = data.get("stop_reason") or data.get("reason") or "completed"
    text = data.get("last_assistant_message") or data.get("response") or ""
    if not text and data.get("transcript_path"):
        text = last_assistant_message(Path(data["transcript_path"]))
    return {
        "id": _record_id("claude-response"),
        "timestamp": _now(),
        "source": CLAUDE_CODE,
        "response": text[:MAX_RESPONSE_CHARS],
        "sessionId": data.get("session_id"),
        "transcriptPath": data.get("transcript_path"),
        "cwd": cwd,
        "reason": reason,
        "toolResults": [_tool_result(tr) for tr in (data.get("tool_results") or [])[:MAX_TOOL_CALLS] if isinstance(tr, dict)],
        "success": reason == "completed",
        "workspaceRoots": [cwd] if cwd else [],
    }


def last_assistant_message(transcript: Path) -> str:
    """Return the text of the last assistant entry in a Claude transcript."""
    try:
        lines = transcript.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.debug("Cannot read transcript %s: %s", transcript, e)
        return ""
    for line in reversed(lines):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        if entry.get("type") == "assistant" and isinstance(message, dict):
            text = content_text(message.get("content"))
            if text:
                return text[:MAX_RESPONSE_CHARS]
    return ""


def content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [b if isinstance(b, str) else b.get("text") or "" for b in content
                 if isinstance(b, str) or (isinstance(b, dict) and b.get("type") == "text")]
        return "\n".join(parts)
    if isinstance(content, dict):
        if content.get("text"):
            return str(content["text"])
        return content_text(content.get("content"))
    return ""


def _tool_result(tr: dict) -> dict:
    result = tr.get("result")
    text = result if isinstance(result, str) else json.dumps(result)
    return {"tool": tr.get("tool") or tr.get("name"), "result": text[:MAX_TOOL_RESULT_CHARS]}


# ── Commands ─────────────────────────────────────────────────────


@click.group()
@click.option("--verbose", is_flag=True, help="Log to stderr.")
def main(verbose: bool):
    """Write agent hook events into the devark hook directory."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)


def _capture(build, prefix: str, latest_name: str) -> None:
    try:
        write_drop_file(prefix, latest_name, build(read_input()))
    except Exception as e:
        logger.error("Hook capture failed: %s", e)


@main.command("cursor-prompt")
def cursor_prompt():
    """Cursor beforeSubmitPrompt."""
    _capture(cursor_prompt_record, "prompt", "latest-prompt.json")
    click.echo(CONTINUE)


@main.command("cursor-response")
def cursor_response():
    """Cursor afterAgentResponse."""
    _capture(lambda d: cursor_response_record(d, is_stop=False), "cursor-response", "latest-cursor-response.json")
    click.echo(CONTINUE)


@main.command("cursor-stop")
def cursor_stop():
    """Cursor stop."""
    _capture(
        lambda d: cursor_response_record(d, is_stop=True),
        "cursor-response-final",
        "latest-cursor-response-final.json",
    )
    click.echo(CONTINUE)


@main.command("claude-prompt")
def claude_prompt():
    """Claude Code UserPromptSubmit."""
    _capture(claude_prompt_record, "claude-prompt", "latest-claude-prompt.json")


@main.command("claude-stop")
def claude_stop():
    """Claude Code Stop."""
    _capture(claude_response_record, "claude-response", "latest-claude-response.json")


@main.command("claude-session")
@click.option("--trigger", default="sessionstart", help="Hook that fired this sync.")
def claude_session(trigger: str):
    """Claude Code SessionStart, PreCompact and SessionEnd: sync quietly."""
    from .backends import get_available_sources
    from .sync import SyncService

    read_input()
    try:
        result = asyncio.run(SyncService(get_available_sources()).sync())
    except Exception as e:
        logger.error("Background sync (%s) failed: %s", trigger, e)
        return
    logger.info("Background sync (%s): %d sessions uploaded", trigger, result.sessions_uploaded)


if __name__ == "__main__":
    main()
