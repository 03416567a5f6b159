"""Claude Code session backend.

Reads sessions from the ~/.claude/projects/ directory structure: one folder
per project (the project path with separators encoded as dashes) holding one
``<uuid>.jsonl`` file per session.

JSONL entries that matter here:
- entries with ``sessionId``, ``cwd`` and ``timestamp``: session metadata
  (the first one wins).
- entries with ``message`` and ``timestamp``: one user or assistant message.
  Content is a string or an array of text / tool_use / tool_result / image
  blocks; images are dropped and tool blocks are rendered as markers.
- entries with ``toolUseResult`` of type create/update: an edited file.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path

from ..config import get_claude_projects_path
from ..core import CLAUDE_CODE, Message, SourceSession, parse_timestamp
from ..provider import ReadError, ReadResult, SessionSource, filter_sessions
from ..sync.duration import calculate_duration

logger = logging.getLogger(__name__)

IGNORED_FOLDER_MARKERS = (
    "devark-hooks",
    "devark-temp",
    "devark-analysis",
    "temp-prompt-analysis",
    "temp-standup",
    "temp-productivity-report",
    "programs-cursor",
    "appdata-local-programs-cursor",
)


class ClaudeCodeSessionSource(SessionSource):
    """Read-only source for Claude Code JSONL sessions."""

    name = CLAUDE_CODE

    def __init__(self, base_path: Path | None = None):
        self._base_path = Path(base_path) if base_path else None

    def get_base_path(self) -> Path:
        return self._base_path or get_claude_projects_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> ReadResult:
        result = ReadResult(tool=self.name)
        base = self.get_base_path()
        if not base.is_dir():
            return result

        sessions = []
        for project_dir in sorted(base.iterdir()):
            if not project_dir.is_dir() or should_ignore_folder(project_dir.name):
                continue
            for jsonl_file in sorted(project_dir.glob("*.jsonl")):
                if jsonl_file.name.startswith("agent-"):
                    continue
                if since is not None and _modified_before(jsonl_file, since):
                    continue
                try:
                    session = parse_session_file(jsonl_file, project_dir.name)
                except OSError as e:
                    logger.warning("Failed to read %s: %s", jsonl_file, e)
                    result.errors.append(ReadError(str(jsonl_file), str(e), recoverable=True))
                    continue
                if session is not None:
                    sessions.append(session)

        result.sessions = filter_sessions(sessions, since, project_path, limit)
        return result


def should_ignore_folder(folder_name: str) -> bool:
    """Return True for project folders created by devark's own temp workspaces."""
    lower = folder_name.lower()
    return any(marker in lower for marker in IGNORED_FOLDER_MARKERS)


def parse_session_file(path: Path, project_dir_name: str) -> SourceSession | None:
    """Parse one session file; None when it has no metadata or no messages."""
    messages: list[Message] = []
    metadata: dict | None = None
    edited_files: list[str] = []
    models: Counter = Counter()
    git_branch = None

    with path.open(encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                logger.debug("Bad JSON at %s:%d: %s", path, line_num, e)
                continue
            if not isinstance(entry, dict):
                continue

            if git_branch is None and entry.get("gitBranch"):
                git_branch = entry["gitBranch"]

            timestamp = parse_timestamp(entry.get("timestamp"))
            if metadata is None and entry.get("sessionId") and entry.get("cwd") and timestamp:
                metadata = {
                    "id": f"{project_dir_name}/{path.name}/{entry['sessionId']}",
                    "project_path": entry["cwd"],
                    "timestamp": timestamp,
                    "session_id": entry["sessionId"],
                }

            message = entry.get("message")
            if isinstance(message, dict) and timestamp:
                role = message.get("role")
                content = render_content(message.get("content"))
                if role in ("user", "assistant"):
                    messages.append(Message(role=role, content=content, timestamp=timestamp))
                if role == "assistant" and message.get("model"):
                    models[message["model"]] += 1

            tool_result = entry.get("toolUseResult")
            if isinstance(tool_result, dict) and tool_result.get("type") in ("create", "update"):
                file_path = tool_result.get("filePath")
                if file_path and file_path not in edited_files:
                    edited_files.append(file_path)

    if metadata is None or not messages:
        return None

    duration = calculate_duration(m.timestamp for m in messages)
    project_path = metadata["project_path"]
    return SourceSession(
        id=metadata["id"],
        source=CLAUDE_CODE,
        project_path=project_path,
        project_name=Path(project_path.replace("\\", "/")).name or None,
        start_time=metadata["timestamp"],
        last_activity=messages[-1].timestamp,
        messages=messages,
        duration=duration.duration_seconds,
        claude_session_id=metadata["session_id"],
        metadata={
            "files_edited": len(edited_files),
            "editedFiles": edited_files,
            "models": dict(models),
            "primaryModel": models.most_common(1)[0][0] if models else None,
            "gitBranch": git_branch,
        },
    )


def render_content(content) -> str:
    """Flatten message content blocks to text; tool blocks become ``[Tool...]`` markers."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        block_type = block.get("type", "")
        if block_type == "text":
            parts.append(block.get("text", ""))
        elif block_type == "tool_use":
            parts.append(f"[Tool: {block.get('name', 'unknown')}]")
        elif block_type == "tool_result":
            parts.append("[Tool result]")
    return "\n".join(p for p in parts if p)


def _modified_before(path: Path, since: datetime) -> bool:
    try:
        stat = path.stat()
    except OSError:
        return False
    return max(stat.st_mtime, stat.st_ctime) < since.timestamp()
