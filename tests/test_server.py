"""Tests for the FastAPI server."""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from devark.backends.claude_code import ClaudeCodeSessionSource
from devark.backends.cursor import CursorSessionSource
from devark.server import app
from devark.storage import StorageManager


@pytest.fixture(autouse=True)
def reset_service_cache():
    """Reset the service caches before each test."""
    import devark.server as srv
    srv._unified = None
    srv._storage = None
    yield
    srv._unified = None
    srv._storage = None


@pytest.fixture
def sources(cursor_db, claude_projects):
    return [CursorSessionSource(cursor_db), ClaudeCodeSessionSource(claude_projects)]


@pytest.fixture
def client(sources):
    with patch("devark.server.get_available_sources", return_value=sources):
        yield AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_get_sources(client):
    async with client:
        resp = await client.get("/api/sources")
    assert resp.status_code == 200
    assert resp.json() == [
        {"name": "cursor", "displayName": "Cursor", "available": True},
        {"name": "claude_code", "displayName": "Claude Code", "available": True},
    ]


@pytest.mark.asyncio
async def test_get_sources_when_nothing_installed():
    with patch("devark.server.get_available_sources", return_value=[]):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/api/sources")
    assert [s["available"] for s in resp.json()] == [False, False]


@pytest.mark.asyncio
async def test_get_projects(client):
    async with client:
        resp = await client.get("/api/projects")
    assert resp.status_code == 200
    names = {p["name"] for p in resp.json()}
    assert names == {"alpha", "beta", "Unknown Workspace"}


@pytest.mark.asyncio
async def test_get_projects_by_source(client):
    async with client:
        resp = await client.get("/api/projects", params={"source": "claude_code"})
    data = resp.json()
    assert [p["name"] for p in data] == ["alpha"]
    assert data[0]["sessions"][0]["platform"] == "claude_code"
    assert data[0]["sessions"][0]["sourceSessionId"] == "sess-1"


@pytest.mark.asyncio
async def test_invalid_since(client):
    async with client:
        resp = await client.get("/api/projects", params={"since": "yesterday-ish"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_get_sessions(client):
    async with client:
        resp = await client.get("/api/sessions", params={"limit": 2})
    data = resp.json()
    assert data["total"] == 4
    assert len(data["sessions"]) == 2


@pytest.mark.asyncio
async def test_get_session_with_slashes_in_id(client):
    async with client:
        resp = await client.get("/api/session/-Users-dev-alpha/sess-1.jsonl/sess-1")
    assert resp.status_code == 200
    assert resp.json()["id"] == "-Users-dev-alpha/sess-1.jsonl/sess-1"


@pytest.mark.asyncio
async def test_session_not_found(client):
    async with client:
        resp = await client.get("/api/session/nonexistent")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_analysis_and_coaching(client, tmp_path):
    import devark.server as srv
    storage = StorageManager(tmp_path / "copilot")
    storage.initialize()
    storage.save_analysis({"id": "p1", "score": 7.5})
    storage.save_coaching({"promptId": "p1", "suggestions": [], "timestamp": "2025-01-15T10:00:00Z"})
    srv._storage = storage

    async with client:
        analysis = await client.get("/api/prompts/p1/analysis")
        coaching = await client.get("/api/coaching/p1")
        missing = await client.get("/api/coaching/p2")

    assert analysis.json()["score"] == 7.5
    assert coaching.json()["promptId"] == "p1"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_stats(client):
    async with client:
        resp = await client.get("/api/stats")
    data = resp.json()
    assert data["sessions"]["totalSessions"] == 0
    assert data["storage"]["totalAnalyses"] == 0
