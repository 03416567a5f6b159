"""Heuristic analysis of agent responses: outcome, topics, touched files, progress.

No provider calls; this runs on every response before coaching.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..core import CURSOR, Response, Session

OUTCOMES = ("success", "partial", "blocked", "error")

TOPIC_PATTERNS = [
    (re.compile(r"\b(test|testing|tests|spec)\b", re.I), "Testing"),
    (re.compile(r"\b(fix|fixed|bug|error|issue)\b", re.I), "Bug Fix"),
    (re.compile(r"\b(refactor|clean|improve)\b", re.I), "Refactoring"),
    (re.compile(r"\b(add|create|implement|new)\b", re.I), "Feature"),
    (re.compile(r"\b(type|types|typescript|interface)\b", re.I), "Type Safety"),
    (re.compile(r"\b(style|css|design|ui)\b", re.I), "Styling"),
    (re.compile(r"\b(api|endpoint|request|response)\b", re.I), "API"),
    (re.compile(r"\b(database|db|query|sql)\b", re.I), "Database"),
    (re.compile(r"\b(auth|login|authentication|jwt)\b", re.I), "Authentication"),
    (re.compile(r"\b(deploy|build|ci|cd)\b", re.I), "DevOps"),
    (re.compile(r"\b(config|configuration|setup|env)\b", re.I), "Configuration"),
    (re.compile(r"\b(document|readme|comment)\b", re.I), "Documentation"),
    (re.compile(r"\b(component|react|vue|angular)\b", re.I), "Components"),
    (re.compile(r"\b(hook|useState|useEffect)\b", re.I), "React Hooks"),
    (re.compile(r"\b(state|redux|store|context)\b", re.I), "State Management"),
    (re.compile(r"\b(route|router|navigation)\b", re.I), "Routing"),
    (re.compile(r"\b(validation|validate|schema)\b", re.I), "Validation"),
    (re.compile(r"\b(performance|optimize|cache)\b", re.I), "Performance"),
    (re.compile(r"\b(security|sanitize|escape)\b", re.I), "Security"),
]

MAX_TOPICS = 5
MAX_ENTITIES = 20

_RESULT_PATH_RE = re.compile(r"(?:file|path|wrote|created|modified)[:\s]+([^\s,\n]+)", re.I)
_TEXT_FILE_PATTERNS = [
    re.compile(r"(?:modified|created|updated|wrote|edited)\s+[`\"']?([a-zA-Z0-9_\-./\\]+\.[a-zA-Z]{2,6})[`\"']?", re.I),
    re.compile(r"`([a-zA-Z0-9_\-./\\]+\.[a-zA-Z]{2,6})`"),
]


@dataclass
class GoalProgress:
    before: int
    after: int
    just_completed: Optional[str] = None

    def to_dict(self) -> dict:
        return {"before": self.before, "after": self.after, "justCompleted": self.just_completed}


@dataclass
class ResponseAnalysis:
    summary: str
    outcome: str
    topics_addressed: list[str] = field(default_factory=list)
    entities_modified: list[str] = field(default_factory=list)
    goal_progress: Optional[GoalProgress] = None

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "outcome": self.outcome,
            "topicsAddressed": list(self.topics_addressed),
            "entitiesModified": list(self.entities_modified),
            "goalProgress": self.goal_progress.to_dict() if self.goal_progress else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResponseAnalysis":
        progress = data.get("goalProgress")
        return cls(
            summary=data.get("summary", ""),
            outcome=data.get("outcome", "partial"),
            topics_addressed=list(data.get("topicsAddressed") or []),
            entities_modified=list(data.get("entitiesModified") or []),
            goal_progress=GoalProgress(
                before=progress.get("before", 0),
                after=progress.get("after", 0),
                just_completed=progress.get("justCompleted"),
            ) if progress else None,
        )


def analyze_response(response: Response, session: Session | None = None) -> ResponseAnalysis:
    outcome = determine_outcome(response)
    return ResponseAnalysis(
        summary=generate_summary(response, outcome),
        outcome=outcome,
        topics_addressed=extract_topics(response.response),
        entities_modified=extract_entities(response),
        goal_progress=estimate_goal_progress(response, session),
    )


def determine_outcome(response: Response) -> str:
    if response.source == CURSOR:
        return "success" if response.success else "error"
    if response.reason == "completed":
        return "success"
    if response.reason == "error":
        return "error"
    if response.reason == "cancelled":
        return "partial"
    return "partial" if response.success is not False else "error"


def extract_topics(text: str) -> list[str]:
    if not text:
        return []
    return [topic for pattern, topic in TOPIC_PATTERNS if pattern.search(text)][:MAX_TOPICS]


def normalize_file_path(path: str) -> str:
    """Trim ``./``, use forward slashes and keep only the last two parts of long paths."""
    normalized = re.sub(r"^\.[\\/]", "", path).replace("\\", "/")
    if len(normalized) > 50:
        normalized = "/".join(normalized.split("/")[-2:])
    return normalized


def is_valid_file_path(path: str) -> bool:
    if not re.search(r"\.[a-zA-Z]{2,6}$", path):
        return False
    if re.match(r"^https?://", path):
        return False
    return re.search(r'[<>|"?*]', path) is None


def extract_entities(response: Response) -> list[str]:
    entities: list[str] = []

    def add(path: str) -> None:
        normalized = normalize_file_path(path)
        if normalized and normalized not in entities:
            entities.append(normalized)

    for path in response.files_modified:
        add(path)

    for call in response.tool_calls:
        args = call.get("arguments")
        if isinstance(args, dict):
            for key in ("path", "file", "file_path"):
                if isinstance(args.get(key), str):
                    add(args[key])

    for result in response.tool_results:
        text = result.get("result")
        if not isinstance(text, str):
            continue
        for path in _RESULT_PATH_RE.findall(text):
            if "/" in path or "\\" in path:
                add(path)

    if response.response:
        for pattern in _TEXT_FILE_PATTERNS:
            for path in pattern.findall(response.response):
                if is_valid_file_path(path):
                    add(path)

    return entities[:MAX_ENTITIES]


def generate_summary(response: Response, outcome: str) -> str:
    line = _first_meaningful_line(response.response)
    if line:
        return line

    action = {
        "success": "Completed",
        "partial": "Partially completed",
        "blocked": "Blocked on",
    }.get(outcome, "Error in")

    if response.files_modified:
        first = normalize_file_path(response.files_modified[0])
        if len(response.files_modified) == 1:
            return f"{action} changes to {first}"
        return f"{action} changes to {len(response.files_modified)} files including {first}"
    if response.tool_calls:
        return f"{action} {len(response.tool_calls)} operations"
    return f"{action} task"


def estimate_goal_progress(response: Response, session: Session | None) -> GoalProgress | None:
    """Each prompt since the goal was set counts ~5%; a response adds up to 30% more."""
    if session is None or not session.goal:
        return None

    prompts_since = sum(
        1 for p in session.prompts
        if session.goal_set_at is None or p.timestamp >= session.goal_set_at
    )
    before = min(90, prompts_since * 5)

    increment = 0
    if response.success is not False:
        increment = 5
        increment += min(15, len(response.files_modified) * 5)
        increment += min(10, (len(response.tool_calls) + len(response.tool_results)) * 2)
    after = min(100, before + increment)

    milestone = None
    if after > before:
        if after >= 90:
            milestone = "Nearing completion"
        elif response.files_modified:
            milestone = f"Updated {len(response.files_modified)} file(s)"
        else:
            milestone = "Made progress"
    return GoalProgress(before=before, after=after, just_completed=milestone)


def _is_json_like(line: str) -> bool:
    if line.startswith(("{", "[")):
        return True
    if len(re.findall(r'"[^"]+"\s*:', line)) >= 2:
        return True
    return re.match(r'^"[^"]+"\s*:\s*.+', line) is not None


def _first_meaningful_line(text: str) -> str | None:
    for raw in (text or "").split("\n"):
        line = raw.strip()
        if len(line) < 15:
            continue
        if re.match(r"^#{1,6}\s", line) or line.startswith("```"):
            continue
        if _is_json_like(line):
            continue
        if re.match(r"^[a-zA-Z0-9_\-./\\]+$", line):
            continue
        return line
    return None
