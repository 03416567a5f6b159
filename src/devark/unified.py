"""Merge hook-captured sessions with sessions read from the agents' own stores.

Hook-captured sessions (owned by the SessionManager) are authoritative for
goals, custom names and scores. Sessions read from Cursor's database or
Claude Code's JSONL files cannot be written, so mutable metadata for them
lives in a goal-progress cache that is re-applied on every refresh.
"""

import copy
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .core import (
    Project,
    Prompt,
    Session,
    SourceSession,
    normalize_project_path,
    project_id_for,
    truncate_text,
    utcnow,
)
from .provider import ReadError, SessionSource
from .sessions import PROMPT_TRUNCATE_LENGTH, SessionManager

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 90
UNKNOWN_PATH = "unknown"


@dataclass
class GoalCacheEntry:
    progress: Optional[int] = None
    goal: Optional[str] = None
    custom_name: Optional[str] = None


def source_session_id_of(session: Session) -> str | None:
    """The id the external tool uses for this session, from metadata or the id prefix."""
    if session.source_session_id:
        return session.source_session_id
    prefix = f"{session.platform}-"
    if session.id.startswith(prefix):
        return session.id[len(prefix):]
    return None


def to_session(source_session: SourceSession, project_id: str, now: datetime | None = None) -> Session:
    """Convert a read-only external session into the session model."""
    now = now or utcnow()
    user_messages = [m for m in source_session.messages if m.role == "user"]
    prompts = [
        Prompt(
            id=f"{source_session.id}-p{i}",
            session_id=source_session.id,
            text=m.content,
            truncated_text=truncate_text(m.content, PROMPT_TRUNCATE_LENGTH),
            timestamp=m.timestamp or source_session.start_time,
        )
        for i, m in enumerate(user_messages)
    ]
    prompts.sort(key=lambda p: p.timestamp, reverse=True)

    last_activity = source_session.last_activity or source_session.start_time
    session = Session(
        id=source_session.id,
        project_id=project_id,
        platform=source_session.source,
        start_time=source_session.start_time,
        last_activity_time=last_activity,
        prompts=prompts,
        total_duration=source_session.duration // 60,
        metadata={
            "sourceSessionId": source_session.original_id,
            "files": list(source_session.metadata.get("editedFiles") or []),
            "external": True,
        },
    )
    session.recount_prompts()
    session.touch()
    session.is_active = session.is_recent(now)
    return session


def build_projects(source_sessions: list[SourceSession], now: datetime | None = None) -> list[Project]:
    """Group external sessions into projects keyed by ProjectId."""
    projects: dict[str, Project] = {}
    for source_session in source_sessions:
        path = source_session.project_path or UNKNOWN_PATH
        project_id = project_id_for(path)
        project = projects.get(project_id)
        if project is None:
            name = source_session.project_name or os.path.basename(path.rstrip("/\\")) or path
            project = Project(id=project_id, name=name, path=path, is_expanded=True)
            projects[project_id] = project
        project.sessions.append(to_session(source_session, project_id, now))

    for project in projects.values():
        project.sessions.sort(key=lambda s: s.start_time, reverse=True)
        project.refresh_totals()
    return list(projects.values())


def merge_projects(hook_projects: list[Project], external_projects: list[Project]) -> list[Project]:
    """Fold external projects into hook projects with the same ProjectId.

    External sessions already represented by a hook session (same id, or
    same underlying tool session id) are dropped. The inputs are not mutated.
    """
    merged = {p.id: copy.deepcopy(p) for p in hook_projects}

    for external in external_projects:
        project_id = project_id_for(external.path) if external.path else external.id
        existing = merged.get(project_id)
        if existing is None:
            merged[project_id] = copy.deepcopy(external)
            continue

        known_ids = {s.id for s in existing.sessions}
        known_source_ids = {sid for sid in (source_session_id_of(s) for s in existing.sessions) if sid}
        for session in external.sessions:
            if session.id in known_ids or source_session_id_of(session) in known_source_ids:
                continue
            existing.sessions.append(copy.deepcopy(session))

    projects = list(merged.values())
    for project in projects:
        project.sessions.sort(key=lambda s: s.start_time, reverse=True)
        project.refresh_totals()
    projects.sort(key=lambda p: p.last_activity_time or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
    return projects


def visible_projects(projects: list[Project]) -> list[Project]:
    """Drop sessions without an actual user prompt, then projects left empty."""
    visible = []
    for project in projects:
        sessions = [s for s in project.sessions if s.prompt_count > 0]
        if not sessions:
            continue
        project.sessions = sessions
        project.refresh_totals()
        visible.append(project)
    return visible


class UnifiedSessionService:
    """Produces the merged project tree shown to users."""

    def __init__(
        self,
        session_manager: SessionManager | None,
        sources: list[SessionSource] | None = None,
        clock: Callable[[], datetime] = utcnow,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ):
        self.session_manager = session_manager
        self.sources = sources if sources is not None else []
        self._clock = clock
        self.lookback_days = lookback_days
        self._goal_cache: dict[str, GoalCacheEntry] = {}
        self.last_errors: list[ReadError] = []

    # ── Goal-progress cache ──────────────────────────────────────────

    def update_goal_progress_cache(
        self,
        session_id: str,
        progress: int | None = None,
        goal: str | None = None,
        custom_name: str | None = None,
    ) -> None:
        entry = self._goal_cache.setdefault(session_id, GoalCacheEntry())
        if progress is not None:
            entry.progress = progress
        if goal is not None:
            entry.goal = goal
        if custom_name is not None:
            entry.custom_name = custom_name

    def get_cached_goal(self, session: Session) -> GoalCacheEntry | None:
        entry = self._goal_cache.get(session.id)
        if entry is None:
            source_id = source_session_id_of(session)
            if source_id:
                entry = self._goal_cache.get(source_id)
        return entry

    # ── Merged views ─────────────────────────────────────────────────

    def get_projects(
        self,
        since: datetime | None = None,
        sources: list[str] | None = None,
        include_empty: bool = False,
    ) -> list[Project]:
        """Return the merged project tree, most recently active first."""
        hook_projects = self.session_manager.get_all_projects() if self.session_manager else []
        if sources:
            hook_projects = [_only_platforms(p, sources) for p in hook_projects]
        self._remember_goals(hook_projects)

        external = self._read_external(since, sources)
        projects = merge_projects(hook_projects, build_projects(external, self._clock()))
        for project in projects:
            for session in project.sessions:
                self._apply_goal_cache(session)
        return projects if include_empty else visible_projects(projects)

    def get_sessions(
        self,
        project_id: str | None = None,
        platform: str | None = None,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[Session]:
        sessions = []
        for project in self.get_projects(since=since, sources=[platform] if platform else None):
            if project_id and project.id != project_id:
                continue
            sessions.extend(project.sessions)
        sessions.sort(key=lambda s: s.last_activity_time, reverse=True)
        return sessions[:limit] if limit else sessions

    def get_session(self, session_id: str) -> Session | None:
        for project in self.get_projects(include_empty=True):
            for session in project.sessions:
                if session.id == session_id:
                    return session
        return None

    def get_project(self, project_id: str) -> Project | None:
        for project in self.get_projects():
            if project.id == project_id:
                return project
        return None

    def find_project_for_path(self, path: str) -> Project | None:
        wanted = normalize_project_path(path)
        for project in self.get_projects():
            if project.path and normalize_project_path(project.path) == wanted:
                return project
        return None

    def read_source_sessions(
        self, since: datetime | None = None, sources: list[str] | None = None
    ) -> list[SourceSession]:
        """Read raw sessions from every configured source, recording read errors."""
        return self._read_external(since, sources)

    # ── Private helpers ──────────────────────────────────────────────

    def _read_external(self, since: datetime | None, sources: list[str] | None) -> list[SourceSession]:
        if since is None:
            since = self._clock() - timedelta(days=self.lookback_days)
        self.last_errors = []
        sessions = []
        for source in self.sources:
            if sources and source.name not in sources:
                continue
            if not source.is_available():
                continue
            result = source.read_sessions(since=since)
            for error in result.errors:
                logger.warning("%s read error at %s: %s", source.name, error.path, error.error)
            self.last_errors.extend(result.errors)
            sessions.extend(result.sessions)
        return sessions

    def _remember_goals(self, hook_projects: list[Project]) -> None:
        for project in hook_projects:
            for session in project.sessions:
                if session.goal_progress is None and not session.goal and not session.custom_name:
                    continue
                keys = [session.id]
                source_id = source_session_id_of(session)
                if source_id:
                    keys.append(source_id)
                for key in keys:
                    self.update_goal_progress_cache(key, session.goal_progress, session.goal, session.custom_name)

    def _apply_goal_cache(self, session: Session) -> None:
        cached = self.get_cached_goal(session)
        if cached is None:
            return
        if session.goal_progress is None and cached.progress is not None:
            session.goal_progress = cached.progress
        if session.goal is None and cached.goal:
            session.goal = cached.goal
        if session.custom_name is None and cached.custom_name:
            session.custom_name = cached.custom_name


def _only_platforms(project: Project, platforms: list[str]) -> Project:
    filtered = copy.copy(project)
    filtered.sessions = [s for s in project.sessions if s.platform in platforms]
    filtered.refresh_totals()
    return filtered
