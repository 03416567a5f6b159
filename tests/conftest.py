"""Shared test fixtures for devark."""

import json
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from devark.llm import LLMManager
from devark.llm.base import CompletionRequest, CompletionResponse, LLMProvider
from devark.state import GlobalState

SCORE_JSON = json.dumps({
    "clarity": 8,
    "specificity": 7,
    "context": 6,
    "actionability": 8,
    "suggestions": ["Mention the failing test name", "Say which file holds the bug"],
})
ENHANCE_JSON = json.dumps({
    "enhanced": "Fix the null check in auth/login.py so expired tokens return 401, and add a regression test.",
    "improvements": ["Named the file", "Stated the expected behavior"],
})
GOAL_JSON = json.dumps({"suggestedGoal": "Fix the login flow", "confidence": 0.8, "detectedTheme": "Bug Fix"})
PROGRESS_JSON = json.dumps({
    "progress": 40,
    "reasoning": "Login fix is in, tests are missing.",
    "sessionTitle": "Login fix",
    "inferredGoal": "Fix the login flow",
})
COACHING_JSON = json.dumps([
    {
        "type": "test",
        "title": "Cover the expired-token path",
        "description": "auth/login.py changed without a test.",
        "suggestedPrompt": "Write a pytest case for an expired token in auth/login.py",
        "confidence": 0.9,
        "reasoning": "The fix has no regression test",
    },
])


def default_responder(request: CompletionRequest) -> str:
    """Pick a canned answer by recognising which tool built the prompt."""
    prompt = request.prompt
    if "<coaching_request>" in prompt:
        return COACHING_JSON
    if '{"enhanced"' in prompt:
        return ENHANCE_JSON
    if "Infer what the developer is trying" in prompt:
        return GOAL_JSON
    if "Analyze the progress of this coding session" in prompt:
        return PROGRESS_JSON
    return SCORE_JSON


class FakeProvider(LLMProvider):
    """In-memory provider that records every request."""

    name = "fake"

    def __init__(self, responder=default_responder, configured: bool = True, error: str | None = None):
        self.responder = responder
        self.configured = configured
        self.error = error
        self.requests: list[CompletionRequest] = []

    def is_configured(self) -> bool:
        return self.configured

    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.error:
            return CompletionResponse(text="", error=self.error)
        return CompletionResponse(text=self.responder(request), model="fake-model")


async def no_sleep(_seconds):
    return None


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every devark path at the test's tmp dir and drop real credentials."""
    monkeypatch.setenv("DEVARK_HOME", str(tmp_path / "devark-home"))
    monkeypatch.setenv("DEVARK_HOOK_DIR", str(tmp_path / "hooks"))
    monkeypatch.setenv("DEVARK_CURSOR_DB", str(tmp_path / "missing" / "state.vscdb"))
    monkeypatch.setenv("DEVARK_CLAUDE_PATH", str(tmp_path / "missing" / "projects"))
    monkeypatch.setenv("DEVARK_API_URL", "http://devark.test")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("DEVARK_TOKEN", raising=False)


@pytest.fixture
def hook_dir(tmp_path):
    path = tmp_path / "hooks"
    path.mkdir()
    return path


@pytest.fixture
def write_drop(hook_dir):
    """Write a hook drop file and return its path."""

    def _write(name: str, record) -> object:
        path = hook_dir / name
        text = record if isinstance(record, str) else json.dumps(record)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def state(tmp_path):
    return GlobalState(tmp_path / "state" / "state.json")


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def llm(fake_provider):
    return LLMManager([fake_provider])


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


@pytest.fixture
def session_start():
    """A start time two hours ago, inside every lookback window."""
    return (datetime.now(timezone.utc) - timedelta(hours=2)).replace(microsecond=0)


@pytest.fixture
def cursor_db(tmp_path, session_start):
    """A Cursor global state.vscdb with composers in each known layout."""
    db_path = tmp_path / "cursor" / "state.vscdb"
    db_path.parent.mkdir(parents=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")

    t0 = session_start
    inline = {
        "_v": 3,
        "createdAt": _ms(t0),
        "updatedAt": _ms(t0 + timedelta(minutes=5)),
        "workspacePath": "/Users/dev/alpha",
        "name": "Fix auth bug",
        "messages": [
            {"role": "user", "content": "Fix the login bug in auth.py", "timestamp": _ms(t0)},
            {"role": "assistant", "content": "Updated the token check.", "timestamp": _ms(t0 + timedelta(minutes=1))},
            {"role": "system", "content": "ignored system note", "timestamp": _ms(t0 + timedelta(minutes=2))},
            {"role": "user", "content": "Now add a test", "timestamp": _ms(t0 + timedelta(minutes=3))},
            {"role": "assistant", "content": "Added test_login.py.", "timestamp": _ms(t0 + timedelta(minutes=5))},
        ],
    }
    conversation = {
        "_v": 9,
        "createdAt": _ms(t0 + timedelta(minutes=10)),
        "conversation": [
            {"type": 1, "text": "What does this regex do?"},
            {"type": 2, "text": "It matches ISO dates."},
        ],
    }
    headers = {
        "_v": 10,
        "createdAt": _ms(t0 + timedelta(minutes=20)),
        "workspacePath": "/Users/dev/beta",
        "fullConversationHeadersOnly": [
            {"bubbleId": "b1", "type": 1},
            {"bubbleId": "b2", "type": 2},
            {"bubbleId": "missing", "type": 1},
        ],
    }
    empty = {"_v": 3, "createdAt": _ms(t0), "messages": []}

    rows = [
        ("composerData:comp-inline", json.dumps(inline)),
        ("composerData:comp-conversation", json.dumps(conversation)),
        ("composerData:comp-headers", json.dumps(headers)),
        ("composerData:comp-empty", json.dumps(empty)),
        ("bubbleId:comp-headers:b1", json.dumps({"text": "Rename the beta module"})),
        ("bubbleId:comp-headers:b2", json.dumps({"text": "Renamed beta to gamma."})),
    ]
    conn.executemany("INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", rows)
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def empty_cursor_db(tmp_path):
    db_path = tmp_path / "cursor-empty" / "state.vscdb"
    db_path.parent.mkdir(parents=True)
    db_path.write_bytes(b"")
    return db_path


def _jsonl(path, entries):
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n", encoding="utf-8")


@pytest.fixture
def claude_projects(tmp_path, session_start):
    """A ~/.claude/projects tree with one real session and files that must be skipped."""
    base = tmp_path / "claude" / "projects"
    project_dir = base / "-Users-dev-alpha"
    project_dir.mkdir(parents=True)

    def at(minutes: int) -> str:
        return (session_start + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")

    _jsonl(project_dir / "sess-1.jsonl", [
        {"type": "summary", "summary": "Login fix"},
        {
            "sessionId": "sess-1", "cwd": "/Users/dev/alpha", "gitBranch": "main", "timestamp": at(0),
            "message": {"role": "user", "content": "Fix the login bug in auth.py"},
        },
        {
            "sessionId": "sess-1", "timestamp": at(2),
            "message": {
                "role": "assistant", "model": "claude-sonnet",
                "content": [{"type": "text", "text": "Fixed the check."}, {"type": "tool_use", "name": "Edit"}],
            },
        },
        {
            "sessionId": "sess-1", "timestamp": at(3),
            "toolUseResult": {"type": "update", "filePath": "/Users/dev/alpha/auth.py"},
            "message": {"role": "user", "content": [{"type": "tool_result", "content": "ok"}]},
        },
        "not json",
        {
            "sessionId": "sess-1", "timestamp": at(6),
            "message": {"role": "user", "content": "Add a regression test"},
        },
        {
            "sessionId": "sess-1", "timestamp": at(7),
            "message": {"role": "assistant", "model": "claude-sonnet", "content": "Added test_auth.py."},
        },
    ])
    _jsonl(project_dir / "agent-1234.jsonl", [
        {"sessionId": "agent", "cwd": "/Users/dev/alpha", "timestamp": at(0),
         "message": {"role": "user", "content": "sidechain"}},
    ])
    _jsonl(project_dir / "no-meta.jsonl", [
        {"timestamp": at(0), "message": {"role": "user", "content": "orphan"}},
    ])

    ignored = base / "-tmp-devark-hooks"
    ignored.mkdir()
    _jsonl(ignored / "x.jsonl", [
        {"sessionId": "tmp", "cwd": "/tmp/devark-hooks", "timestamp": at(0),
         "message": {"role": "user", "content": "analysis"}},
    ])
    return base
