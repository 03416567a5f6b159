"""Core data models for devark."""

import hashlib
import re
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

CURSOR = "cursor"
CLAUDE_CODE = "claude_code"

SOURCE_DISPLAY_NAMES = {
    CURSOR: "Cursor",
    CLAUDE_CODE: "Claude Code",
}

ACTIVE_SESSION_WINDOW_HOURS = 24

_TOOL_MARKER_RE = re.compile(r"^\s*\[Tool[^\]]*\]\s*$")
_SLASH_COMMAND_RE = re.compile(r"^/([a-zA-Z][a-zA-Z0-9\-_:]*)(?:\s+(.*))?$", re.DOTALL)


def source_display_name(source: str) -> str:
    """Return a human display name for a source tag."""
    return SOURCE_DISPLAY_NAMES.get(source, source.replace("_", " ").title())


def normalize_project_path(path: str) -> str:
    """Lowercase and forward-slash a workspace path."""
    return path.replace("\\", "/").lower()


def project_id_for(path: str) -> str:
    """Derive the stable ProjectId for a workspace path."""
    return hashlib.md5(normalize_project_path(path).encode("utf-8")).hexdigest()[:12]


def is_actual_user_prompt(text: str | None) -> bool:
    """Return True unless the text is empty or an automated tool-result marker."""
    if not text or not text.strip():
        return False
    stripped = text.strip()
    if stripped.startswith("[Tool result]") or stripped.startswith("[Tool:"):
        return False
    return _TOOL_MARKER_RE.match(text) is None


def detect_slash_command(text: str | None) -> tuple[str, str | None] | None:
    """Return ``(command, arguments)`` if the prompt is a slash command like ``/commit``."""
    if not text or not text.strip():
        return None
    match = _SLASH_COMMAND_RE.match(text.strip())
    if match is None:
        return None
    args = (match.group(2) or "").strip()
    return match.group(1), args or None


def truncate_text(text: str, max_len: int = 100) -> str:
    """Truncate text to max_len, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def generate_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce an ISO string, epoch milliseconds or datetime to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _dump(obj) -> dict:
    """asdict() with datetimes rendered as ISO strings."""
    data = asdict(obj)
    for key, value in list(data.items()):
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def _known_kwargs(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class CapturedPrompt:
    """A prompt record dropped by an external agent's submit hook."""

    id: str
    prompt: str
    source: str
    timestamp: datetime
    conversation_id: Optional[str] = None
    generation_id: Optional[str] = None
    session_id: Optional[str] = None  # claude_code session
    model: Optional[str] = None
    cursor_version: Optional[str] = None
    workspace_roots: list[str] = field(default_factory=list)
    attachments: list[dict] = field(default_factory=list)  # {type: file|rule, filePath}
    user_email: Optional[str] = None
    transcript_path: Optional[str] = None
    cwd: Optional[str] = None

    @classmethod
    def from_record(cls, data: dict, source: str) -> "CapturedPrompt":
        return cls(
            id=str(data["id"]),
            prompt=str(data["prompt"]),
            source=data.get("source") or source,
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            conversation_id=data.get("conversationId"),
            generation_id=data.get("generationId"),
            session_id=data.get("sessionId"),
            model=data.get("model"),
            cursor_version=data.get("cursorVersion"),
            workspace_roots=list(data.get("workspaceRoots") or []),
            attachments=list(data.get("attachments") or []),
            user_email=data.get("userEmail"),
            transcript_path=data.get("transcriptPath"),
            cwd=data.get("cwd"),
        )

    @property
    def source_session_id(self) -> str | None:
        return self.conversation_id or self.session_id

    @property
    def project_path(self) -> str | None:
        return self.cwd or (self.workspace_roots[0] if self.workspace_roots else None)


@dataclass
class Response:
    """An agent response, as captured by a response or stop hook."""

    id: str
    source: str
    timestamp: datetime
    response: str = ""
    success: bool = True
    prompt_id: Optional[str] = None
    prompt_text: Optional[str] = None
    prompt_timestamp: Optional[datetime] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    generation_id: Optional[str] = None
    reason: Optional[str] = None  # "completed" | "error" | "cancelled"
    stop_reason: Optional[str] = None  # "completed" | "aborted" | "error"
    loop_count: Optional[int] = None
    is_final: bool = False
    hook_type: Optional[str] = None
    tool_calls: list[dict] = field(default_factory=list)  # {name, arguments}
    tool_results: list[dict] = field(default_factory=list)  # {tool, result}
    files_modified: list[str] = field(default_factory=list)
    workspace_roots: list[str] = field(default_factory=list)
    cwd: Optional[str] = None
    model: Optional[str] = None
    cursor_version: Optional[str] = None
    transcript_path: Optional[str] = None
    user_email: Optional[str] = None

    @classmethod
    def from_record(cls, data: dict, source: str, is_final: bool = False) -> "Response":
        hook_type = data.get("hookType")
        loop_count = data.get("loopCount")
        return cls(
            id=str(data["id"]),
            source=data.get("source") or source,
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            response=str(data.get("response") or "")[:5000],
            success=data.get("success", True) is not False,
            session_id=data.get("sessionId"),
            conversation_id=data.get("conversationId"),
            generation_id=data.get("generationId"),
            reason=data.get("reason"),
            stop_reason=data.get("stopReason"),
            loop_count=int(loop_count) if isinstance(loop_count, (int, float)) else None,
            is_final=bool(is_final or data.get("isFinal") or hook_type in ("stop", "Stop")),
            hook_type=hook_type,
            tool_calls=[tc for tc in (data.get("toolCalls") or []) if isinstance(tc, dict)][:10],
            tool_results=[tr for tr in (data.get("toolResults") or []) if isinstance(tr, dict)][:10],
            files_modified=[str(f) for f in (data.get("filesModified") or [])][:20],
            workspace_roots=list(data.get("workspaceRoots") or []),
            cwd=data.get("cwd"),
            model=data.get("model"),
            cursor_version=data.get("cursorVersion"),
            transcript_path=data.get("transcriptPath"),
            user_email=data.get("userEmail"),
        )

    @property
    def tool_names(self) -> list[str]:
        return [str(tc.get("name")) for tc in self.tool_calls if tc.get("name")]

    def to_dict(self) -> dict:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Response":
        kwargs = _known_kwargs(cls, data)
        kwargs["timestamp"] = parse_timestamp(kwargs.get("timestamp")) or utcnow()
        kwargs["prompt_timestamp"] = parse_timestamp(kwargs.get("prompt_timestamp"))
        return cls(**kwargs)


@dataclass
class Prompt:
    """A user prompt within a session, plus its analysis fields."""

    id: str
    session_id: str
    text: str
    truncated_text: str
    timestamp: datetime
    score: Optional[float] = None  # 0-10
    breakdown: Optional[dict] = None
    enhanced_text: Optional[str] = None
    enhanced_score: Optional[float] = None
    quick_wins: Optional[list[str]] = None
    explanation: Optional[dict] = None

    def to_dict(self) -> dict:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Prompt":
        kwargs = _known_kwargs(cls, data)
        kwargs["timestamp"] = parse_timestamp(kwargs.get("timestamp")) or utcnow()
        return cls(**kwargs)


@dataclass
class Session:
    """A time-bounded run of prompts and responses in one project and source."""

    id: str
    project_id: str
    platform: str  # source tag
    start_time: datetime
    last_activity_time: datetime
    prompt_count: int = 0
    prompts: list[Prompt] = field(default_factory=list)  # newest first
    responses: list[Response] = field(default_factory=list)  # newest first
    is_active: bool = True
    total_duration: Optional[int] = None  # minutes
    goal: Optional[str] = None
    goal_progress: Optional[int] = None  # 0-100
    goal_set_at: Optional[datetime] = None
    goal_completed_at: Optional[datetime] = None
    custom_name: Optional[str] = None
    token_usage: Optional[dict] = None
    average_score: Optional[float] = None
    has_unread_activity: bool = False
    metadata: dict = field(default_factory=dict)  # sourceSessionId, files, ...

    @property
    def source_session_id(self) -> str | None:
        return self.metadata.get("sourceSessionId")

    def recount_prompts(self) -> None:
        """Recompute prompt_count from the actual user prompts held."""
        self.prompt_count = sum(1 for p in self.prompts if is_actual_user_prompt(p.text))

    def touch(self) -> None:
        """Recompute last_activity_time from prompts and responses."""
        times = [self.start_time]
        times.extend(p.timestamp for p in self.prompts)
        times.extend(r.timestamp for r in self.responses)
        self.last_activity_time = max(times)

    def is_recent(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (now - self.last_activity_time).total_seconds() < ACTIVE_SESSION_WINDOW_HOURS * 3600

    def to_dict(self) -> dict:
        data = _dump(self)
        data["prompts"] = [p.to_dict() for p in self.prompts]
        data["responses"] = [r.to_dict() for r in self.responses]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        kwargs = _known_kwargs(cls, data)
        for key in ("start_time", "last_activity_time"):
            kwargs[key] = parse_timestamp(kwargs.get(key)) or utcnow()
        for key in ("goal_set_at", "goal_completed_at"):
            kwargs[key] = parse_timestamp(kwargs.get(key))
        kwargs["prompts"] = [Prompt.from_dict(p) for p in kwargs.get("prompts") or []]
        kwargs["responses"] = [Response.from_dict(r) for r in kwargs.get("responses") or []]
        return cls(**kwargs)


@dataclass
class Project:
    """A workspace that groups sessions across sources."""

    id: str
    name: str
    path: Optional[str] = None
    sessions: list[Session] = field(default_factory=list)
    last_activity_time: Optional[datetime] = None
    total_sessions: int = 0
    total_prompts: int = 0
    is_expanded: bool = False

    def refresh_totals(self) -> None:
        """Recompute the aggregate fields from the sessions list."""
        self.total_sessions = len(self.sessions)
        self.total_prompts = sum(s.prompt_count for s in self.sessions)
        if self.sessions:
            self.last_activity_time = max(s.last_activity_time for s in self.sessions)

    def to_dict(self) -> dict:
        data = _dump(self)
        data["sessions"] = [s.to_dict() for s in self.sessions]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        kwargs = _known_kwargs(cls, data)
        kwargs["last_activity_time"] = parse_timestamp(kwargs.get("last_activity_time"))
        kwargs["sessions"] = [Session.from_dict(s) for s in kwargs.get("sessions") or []]
        return cls(**kwargs)


@dataclass
class Interaction:
    """A prompt paired with the response that answered it, if any."""

    prompt: Prompt
    response: Optional[Response] = None


@dataclass
class ConversationState:
    """Aggregate over one conversation, built when its final response arrives."""

    conversation_id: str
    end_time: datetime
    total_prompts: int = 0
    total_responses: int = 0
    stop_reason: str = "completed"
    loop_count: int = 0
    files_modified: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "conversationId": self.conversation_id,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "durationMs": self.duration_ms,
            "totalPrompts": self.total_prompts,
            "totalResponses": self.total_responses,
            "stopReason": self.stop_reason,
            "loopCount": self.loop_count,
            "filesModified": list(self.files_modified),
            "toolsUsed": list(self.tools_used),
        }


@dataclass
class Message:
    """A single message read back from an external agent's own history."""

    role: str  # "user" | "assistant"
    content: str
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": _iso(self.timestamp)}


@dataclass
class SourceSession:
    """A session materialized from a read-only external store."""

    id: str  # "<source>-<originalId>" for cursor, "<dir>/<file>/<sessionId>" for claude
    source: str
    project_path: str
    start_time: datetime
    messages: list[Message] = field(default_factory=list)
    last_activity: Optional[datetime] = None
    project_name: Optional[str] = None
    duration: int = 0  # seconds, idle gaps excluded
    claude_session_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def original_id(self) -> str:
        """The id the external tool itself uses, without our source prefix."""
        if self.claude_session_id:
            return self.claude_session_id
        prefix = self.source + "-"
        return self.id[len(prefix):] if self.id.startswith(prefix) else self.id

    @property
    def user_prompts(self) -> list[Message]:
        return [m for m in self.messages if m.role == "user" and is_actual_user_prompt(m.content)]
