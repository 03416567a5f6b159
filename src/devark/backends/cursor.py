"""Cursor session backend.

Reads composer sessions from Cursor's global ``state.vscdb``. The
``cursorDiskKV`` table holds one ``composerData:<composerId>`` row per
session and, on newer versions, one ``bubbleId:<composerId>:<bubbleId>`` row
per message. The composer JSON has changed shape across Cursor releases
(schema versions 3, 9, 10, ...), so message extraction probes each known
layout in turn. All database access is read-only.
"""

import json
import logging
import os
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

from ..config import get_cursor_global_db_path
from ..core import CURSOR, Message, SourceSession, parse_timestamp, utcnow
from ..provider import ReadError, ReadResult, SessionSource, filter_sessions
from ..sync.duration import calculate_duration

logger = logging.getLogger(__name__)

MAX_DB_FILE_SIZE = 100 * 1024 * 1024
RECONNECT_DEBOUNCE_SECONDS = 2.0
MAX_RETRY_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.1

USER_TYPE = 1
ASSISTANT_TYPE = 2

_TRANSIENT_MARKERS = ("locked", "busy", "malformed", "corrupt", "disk image")
_MESSAGE_KEYS = ("role", "type", "content", "text", "message")


class CursorSessionSource(SessionSource):
    """Read-only source for Cursor composer sessions."""

    name = CURSOR

    def __init__(
        self,
        db_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._db_path = Path(db_path) if db_path else None
        self._clock = clock
        self._sleep = sleep
        self._conn: sqlite3.Connection | None = None
        self._last_reconnect: float | None = None

    def get_base_path(self) -> Path:
        return self._db_path or get_cursor_global_db_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_file()

    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> ReadResult:
        result = ReadResult(tool=self.name)
        db_path = self.get_base_path()

        if not db_path.is_file():
            result.errors.append(ReadError("cursor-database", "Cursor database not available", recoverable=False))
            return result

        size = db_path.stat().st_size
        if size == 0:
            logger.warning("Cursor database %s is empty", db_path)
            result.errors.append(ReadError(str(db_path), "Cursor database is empty", recoverable=True))
            return result
        if size > MAX_DB_FILE_SIZE:
            logger.warning(
                "Cursor database is %dMB (over %dMB), reading anyway",
                size // (1024 * 1024),
                MAX_DB_FILE_SIZE // (1024 * 1024),
            )

        try:
            rows = self._query("SELECT key, value FROM cursorDiskKV WHERE key LIKE 'composerData:%'")
        except sqlite3.Error as e:
            logger.warning("Failed to read composers from %s: %s", db_path, e)
            result.errors.append(ReadError(str(db_path), str(e), recoverable=True))
            return result

        sessions = []
        for key, value in rows:
            composer_id = key.split(":", 1)[1]
            try:
                session = self._build_session(composer_id, _load_json(value))
            except (sqlite3.Error, json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning("Skipping composer %s: %s", composer_id, e)
                result.errors.append(ReadError(composer_id, str(e), recoverable=True))
                continue
            if session is not None:
                sessions.append(session)

        result.sessions = filter_sessions(sessions, since, project_path, limit)
        return result

    def get_session(self, composer_id: str) -> SourceSession | None:
        """Return one composer session by its Cursor id, or None."""
        try:
            rows = self._query("SELECT key, value FROM cursorDiskKV WHERE key = ?", (f"composerData:{composer_id}",))
            if not rows:
                return None
            return self._build_session(composer_id, _load_json(rows[0][1]))
        except (sqlite3.Error, json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning("Failed to read composer %s: %s", composer_id, e)
            return None

    def get_messages(self, composer_id: str, composer: dict | None = None) -> list[Message]:
        """Return a composer's messages, trying the inline layouts before bubble rows."""
        if composer is None:
            rows = self._query("SELECT key, value FROM cursorDiskKV WHERE key = ?", (f"composerData:{composer_id}",))
            if not rows:
                return []
            composer = _load_json(rows[0][1])

        messages = extract_inline_messages(composer)
        if messages:
            return messages

        headers = composer.get("fullConversationHeadersOnly")
        if isinstance(headers, list) and headers:
            messages = self._messages_from_headers(composer_id, headers)
            if messages:
                return messages

        return self._bubble_messages(composer_id)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Private helpers ──────────────────────────────────────────────

    def _build_session(self, composer_id: str, composer: dict) -> SourceSession | None:
        messages = self.get_messages(composer_id, composer)
        if not messages:
            return None

        workspace_path = composer.get("workspacePath")
        if not isinstance(workspace_path, str) or not workspace_path:
            workspace = composer.get("workspace")
            workspace_path = workspace if isinstance(workspace, str) and workspace else None
        workspace_name = composer.get("workspaceName") or (
            os.path.basename(workspace_path.rstrip("/\\")) if workspace_path else "Unknown Workspace"
        )

        start_time = parse_timestamp(composer.get("createdAt")) or utcnow()
        last_activity = parse_timestamp(composer.get("updatedAt")) or start_time
        duration = calculate_duration(m.timestamp for m in messages)

        return SourceSession(
            id=f"cursor-{composer_id}",
            source=self.name,
            project_path=workspace_path or workspace_name or "Unknown",
            project_name=workspace_name,
            start_time=start_time,
            last_activity=last_activity,
            messages=messages,
            duration=duration.duration_seconds,
            metadata={
                "composerId": composer_id,
                "name": composer.get("name"),
                "schemaVersion": composer.get("_v"),
                "promptCount": count_prompts(composer),
            },
        )

    def _messages_from_headers(self, composer_id: str, headers: list) -> list[Message]:
        messages = []
        for header in headers:
            if not isinstance(header, dict) or not header.get("bubbleId"):
                continue
            rows = self._query(
                "SELECT value FROM cursorDiskKV WHERE key = ?",
                (f"bubbleId:{composer_id}:{header['bubbleId']}",),
            )
            if not rows:
                continue
            try:
                bubble = _load_json(rows[0][0])
            except json.JSONDecodeError:
                logger.debug("Corrupt bubble %s in composer %s", header["bubbleId"], composer_id)
                continue
            if isinstance(bubble, dict) and "type" not in bubble:
                bubble["type"] = header.get("type")
            message = normalize_message(bubble)
            if message is not None:
                messages.append(message)
        return messages

    def _bubble_messages(self, composer_id: str) -> list[Message]:
        rows = self._query(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ? ORDER BY key ASC",
            (f"bubbleId:{composer_id}:%",),
        )
        messages = []
        for key, value in rows:
            try:
                message = normalize_message(_load_json(value), bubble=True)
            except json.JSONDecodeError:
                logger.debug("Corrupt bubble row %s", key)
                continue
            if message is not None:
                messages.append(message)
        return messages

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(f"file:{self.get_base_path()}?mode=ro", uri=True)
            self._last_reconnect = self._clock()
        return self._conn

    def _schedule_reconnect(self) -> None:
        """Drop the cached connection unless one was opened within the debounce window."""
        now = self._clock()
        if self._last_reconnect is not None and now - self._last_reconnect < RECONNECT_DEBOUNCE_SECONDS:
            logger.debug("Reconnect debounced")
            return
        self.close()

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        """Run a read query, retrying lock and corruption errors up to three times."""
        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            try:
                return self._connect().execute(sql, params).fetchall()
            except sqlite3.DatabaseError as e:
                if not is_transient_error(e) or attempt == MAX_RETRY_ATTEMPTS:
                    raise
                logger.warning("Cursor database busy (attempt %d/%d): %s", attempt, MAX_RETRY_ATTEMPTS, e)
                self._schedule_reconnect()
                self._sleep(RETRY_DELAY_SECONDS * attempt)
        return []


def is_transient_error(error: Exception) -> bool:
    """Return True for lock, busy and corruption errors worth retrying."""
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def normalize_message(raw, bubble: bool = False) -> Message | None:
    """Turn one raw Cursor message or bubble into a Message, or None to skip it."""
    if not isinstance(raw, dict):
        return None
    if raw.get("role") == "system" and not bubble:
        return None

    msg_type = raw.get("type")
    if raw.get("role") == "assistant" or msg_type in (ASSISTANT_TYPE, "assistant"):
        role = "assistant"
    else:
        role = "user"

    content = raw.get("content") or raw.get("text") or raw.get("message") or ""
    if not isinstance(content, str) or not content.strip():
        return None

    return Message(role=role, content=content.strip(), timestamp=parse_timestamp(raw.get("timestamp")))


def extract_inline_messages(composer: dict) -> list[Message]:
    """Probe the inline message arrays a composer may carry, first non-empty wins."""
    for key in ("messages", "conversation", "conversationHistory"):
        value = composer.get(key)
        if isinstance(value, list):
            messages = [m for m in (normalize_message(raw) for raw in value) if m is not None]
            if messages:
                return messages

    for key, value in composer.items():
        if key == "fullConversationHeadersOnly" or not _looks_like_messages(value):
            continue
        messages = [m for m in (normalize_message(raw) for raw in value) if m is not None]
        if messages:
            return messages
    return []


def count_prompts(composer: dict) -> int:
    for key in ("messages", "conversationHistory", "conversation"):
        value = composer.get(key)
        if isinstance(value, list):
            return len(value)
    headers = composer.get("fullConversationHeadersOnly")
    if isinstance(headers, list):
        return sum(1 for h in headers if isinstance(h, dict) and h.get("type") == USER_TYPE)
    prompt_count = composer.get("promptCount")
    return prompt_count if isinstance(prompt_count, int) else 0


def _looks_like_messages(value) -> bool:
    if not isinstance(value, list) or not value:
        return False
    first = value[0]
    return isinstance(first, dict) and any(key in first for key in _MESSAGE_KEYS)


def _load_json(value):
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return json.loads(value)
