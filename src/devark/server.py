"""FastAPI server for browsing the merged session tree and stored analyses."""

import logging
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query

from .backends import get_available_sources
from .core import SOURCE_DISPLAY_NAMES, Project, Session, parse_timestamp, source_display_name
from .sessions import SessionManager
from .state import GlobalState
from .storage import StorageManager
from .unified import UnifiedSessionService

logger = logging.getLogger(__name__)

app = FastAPI(title="devark", version="0.1.0")

# Service caches (populated on first request)
_unified: UnifiedSessionService | None = None
_storage: StorageManager | None = None


def _get_unified() -> UnifiedSessionService:
    """Lazily build and cache the unified session service."""
    global _unified
    if _unified is None:
        session_manager = SessionManager(GlobalState(), autosave=False)
        session_manager.load()
        sources = get_available_sources()
        logger.info("Detected sources: %s", [s.name for s in sources])
        _unified = UnifiedSessionService(session_manager, sources)
    return _unified


def _get_storage() -> StorageManager:
    global _storage
    if _storage is None:
        _storage = StorageManager()
        _storage.initialize()
    return _storage


def _session_summary(session: Session) -> dict:
    """A session without its prompt and response bodies."""
    return {
        "id": session.id,
        "projectId": session.project_id,
        "platform": session.platform,
        "startTime": session.start_time.isoformat(),
        "lastActivityTime": session.last_activity_time.isoformat(),
        "promptCount": session.prompt_count,
        "responseCount": len(session.responses),
        "isActive": session.is_active,
        "goal": session.goal,
        "goalProgress": session.goal_progress,
        "customName": session.custom_name,
        "averageScore": session.average_score,
        "sourceSessionId": session.source_session_id,
    }


def _project_summary(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "path": project.path,
        "lastActivityTime": project.last_activity_time.isoformat() if project.last_activity_time else None,
        "totalSessions": project.total_sessions,
        "totalPrompts": project.total_prompts,
        "sessions": [_session_summary(s) for s in project.sessions],
    }


def _parse_since(value: str | None) -> datetime | None:
    if value is None:
        return None
    since = parse_timestamp(value)
    if since is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return since


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/sources")
async def get_sources():
    """Return the known sources and whether each can be read on this machine."""
    available = {s.name for s in _get_unified().sources}
    return [
        {"name": name, "displayName": source_display_name(name), "available": name in available}
        for name in SOURCE_DISPLAY_NAMES
    ]


@app.get("/api/projects")
async def get_projects(
    source: str | None = Query(None, description="Filter by source"),
    since: str | None = Query(None, description="ISO date lower bound"),
    include_empty: bool = Query(False, description="Include sessions with no prompts"),
):
    """Return the merged project tree, most recently active first."""
    projects = _get_unified().get_projects(
        since=_parse_since(since),
        sources=[source] if source else None,
        include_empty=include_empty,
    )
    return [_project_summary(p) for p in projects]


@app.get("/api/sessions")
async def get_sessions(
    source: str | None = Query(None, description="Filter by source"),
    project: str | None = Query(None, description="Filter by project id"),
    since: str | None = Query(None, description="ISO date lower bound"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Return sessions across all projects, newest activity first."""
    sessions = _get_unified().get_sessions(project_id=project, platform=source, since=_parse_since(since))
    return {
        "total": len(sessions),
        "sessions": [_session_summary(s) for s in sessions[offset: offset + limit]],
    }


@app.get("/api/session/{session_id:path}")
async def get_session(session_id: str):
    """Return a full session with prompts and responses."""
    session = _get_unified().get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()


@app.get("/api/prompts/{prompt_id}/analysis")
async def get_prompt_analysis(prompt_id: str):
    analysis = _get_storage().load_analysis(prompt_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return analysis


@app.get("/api/coaching/{prompt_id}")
async def get_coaching(prompt_id: str):
    coaching = _get_storage().load_coaching(prompt_id)
    if coaching is None:
        raise HTTPException(status_code=404, detail="Coaching not found")
    return coaching


@app.get("/api/stats")
async def get_stats():
    """Session totals plus the sizes of the analysis and coaching stores."""
    unified = _get_unified()
    stats = unified.session_manager.get_stats() if unified.session_manager else {}
    return {"sessions": stats, "storage": _get_storage().get_stats()}
