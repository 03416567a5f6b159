"""Session model: projects, sessions, prompts and responses captured by hooks.

The manager is the single writer for its in-memory tree. Every mutation is
persisted to global state under ``copilot.sessions`` and announced to
subscribers as a session event.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from .config import SESSIONS_KEY
from .core import (
    Interaction,
    Project,
    Prompt,
    Response,
    Session,
    generate_id,
    is_actual_user_prompt,
    project_id_for,
    truncate_text,
    utcnow,
)
from .state import GlobalState

logger = logging.getLogger(__name__)

SESSION_CREATED = "session_created"
SESSION_UPDATED = "session_updated"
SESSION_ACTIVITY = "session_activity"
PROMPT_ADDED = "prompt_added"
PROJECT_CREATED = "project_created"
GOAL_SET = "goal_set"
GOAL_COMPLETED = "goal_completed"

MAX_RESPONSES_PER_SESSION = 100
PROMPT_TRUNCATE_LENGTH = 200
RESPONSE_TEXT_LIMIT = 2000
DEFAULT_PAGE_SIZE = 20
DEFAULT_PROJECT_NAME = "Unknown Project"

_PROTECTED_FIELDS = frozenset({"id", "project_id", "prompts", "responses"})


@dataclass
class SessionEvent:
    type: str
    session_id: Optional[str] = None
    project_id: Optional[str] = None
    prompt_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    data: dict = field(default_factory=dict)


@dataclass
class PromptPage:
    prompts: list[Prompt]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.prompts) < self.total


SessionListener = Callable[[SessionEvent], Any]


class SessionManager:
    """Owns the hook-captured project/session tree."""

    def __init__(self, state: GlobalState | None = None, autosave: bool = True):
        self.state = state
        self.autosave = autosave and state is not None
        self.projects: dict[str, Project] = {}
        self.active_session_id: str | None = None
        self.active_project_id: str | None = None
        self._listeners: list[SessionListener] = []

    # ── Persistence ──────────────────────────────────────────────────

    def load(self) -> None:
        """Restore the tree from global state."""
        if self.state is None:
            return
        raw = self.state.get(SESSIONS_KEY)
        if not isinstance(raw, dict):
            return
        self.projects = {}
        for item in raw.get("projects", []):
            try:
                project = Project.from_dict(item)
            except (TypeError, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable stored project: %s", e)
                continue
            self.projects[project.id] = project
        self.active_session_id = raw.get("activeSessionId")
        self.active_project_id = raw.get("activeProjectId")
        logger.info("Loaded %d projects from state", len(self.projects))

    def save(self) -> None:
        if self.state is None:
            return
        self.state.update(SESSIONS_KEY, {
            "projects": [p.to_dict() for p in self.projects.values()],
            "activeSessionId": self.active_session_id,
            "activeProjectId": self.active_project_id,
        })

    # ── Events ───────────────────────────────────────────────────────

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Source sync ──────────────────────────────────────────────────

    def sync_from_source(
        self,
        source_id: str,
        project_path: str,
        source_session_id: str | None = None,
        project_name: str | None = None,
        timestamp: datetime | None = None,
    ) -> str:
        """Ensure a project and a session exist for this source; return the session id."""
        if source_session_id:
            existing = self.find_session_by_source_id(source_session_id)
            if existing is not None:
                self.active_session_id = existing.id
                self.active_project_id = existing.project_id
                self._emit(SESSION_ACTIVITY, session_id=existing.id, project_id=existing.project_id)
                return existing.id

        project = self._ensure_project(project_path, project_name)
        session = self.get_or_create_session(project.id, source_id, source_session_id, timestamp)
        session.metadata["sourceId"] = source_id
        self.active_session_id = session.id
        self.active_project_id = project.id
        self._save()
        self._emit(SESSION_ACTIVITY, session_id=session.id, project_id=project.id)
        return session.id

    def on_prompt_detected(
        self,
        text: str,
        timestamp: datetime,
        source_id: str,
        source_session_id: str | None,
        prompt_id: str | None = None,
    ) -> str:
        """Append a hook-captured prompt to its session; return the prompt id."""
        if not source_session_id:
            return ""

        session = self.find_session_by_source_id(source_session_id)
        if session is None:
            project = self.get_active_project() or self._ensure_project(DEFAULT_PROJECT_NAME, DEFAULT_PROJECT_NAME)
            session = self.get_or_create_session(project.id, source_id, source_session_id, timestamp)

        project = self.projects.get(session.project_id)
        if project is None:
            return ""

        prompt = self._add_prompt(session, project, text, timestamp, prompt_id)
        return prompt.id

    def add_prompt(self, text: str, score: float | None = None, breakdown: dict | None = None) -> Prompt:
        """Append a prompt to the active session."""
        session = self.get_active_session()
        if session is None:
            raise RuntimeError("No active session")
        project = self.projects[session.project_id]
        prompt = self._add_prompt(session, project, text, utcnow(), None)
        if score is not None:
            self.update_prompt_score(prompt.id, score, breakdown)
        return prompt

    def add_response(self, response: Response, linked_prompt_id: str | None = None) -> None:
        """Append a response to its session; responses with no session are dropped."""
        session = None
        for key in (response.conversation_id, response.session_id):
            if key:
                session = self.find_session_by_source_id(key)
                if session is not None:
                    break
        if session is None:
            session = self.get_active_session()
        if session is None:
            logger.debug("No session for response %s, dropping", response.id)
            return

        prompt_id = linked_prompt_id or response.prompt_id
        if not prompt_id and session.prompts:
            prompt_id = session.prompts[0].id
        response = replace(response, response=response.response[:RESPONSE_TEXT_LIMIT], prompt_id=prompt_id)

        session.responses.insert(0, response)
        del session.responses[MAX_RESPONSES_PER_SESSION:]
        session.touch()
        self._refresh_project(session.project_id)
        self._save()
        self._emit(
            SESSION_UPDATED,
            session_id=session.id,
            project_id=session.project_id,
            prompt_id=response.prompt_id,
            data={"responseId": response.id},
        )

    def update_prompt_score(
        self,
        prompt_id: str,
        score: float,
        breakdown: dict | None = None,
        enhanced_text: str | None = None,
        enhanced_score: float | None = None,
    ) -> bool:
        """Write analysis fields on a prompt; text and timestamp are never touched."""
        found = self.find_prompt(prompt_id)
        if found is None:
            return False
        session, prompt = found
        prompt.score = score
        if breakdown is not None:
            prompt.breakdown = breakdown
        if enhanced_text is not None:
            prompt.enhanced_text = enhanced_text
        if enhanced_score is not None:
            prompt.enhanced_score = enhanced_score
        session.average_score = _average_score(session.prompts)
        self._save()
        self._emit(
            SESSION_UPDATED,
            session_id=session.id,
            project_id=session.project_id,
            prompt_id=prompt_id,
            data={"score": score},
        )
        return True

    def update_prompt_details(
        self, prompt_id: str, quick_wins: list[str] | None = None, explanation: dict | None = None
    ) -> bool:
        found = self.find_prompt(prompt_id)
        if found is None:
            return False
        _, prompt = found
        if quick_wins is not None:
            prompt.quick_wins = quick_wins
        if explanation is not None:
            prompt.explanation = explanation
        self._save()
        return True

    # ── Reading ──────────────────────────────────────────────────────

    def get_last_interactions(self, count: int, session_id: str | None = None) -> list[Interaction]:
        """Return the most recent prompt/response pairs, oldest first."""
        session = self._resolve_session(session_id)
        if session is None:
            return []
        recent = list(reversed(session.prompts[:count]))
        return [Interaction(prompt=p, response=_response_for(session, p.id)) for p in recent]

    def get_first_interactions(self, count: int, session_id: str | None = None) -> list[Interaction]:
        """Return the earliest prompt/response pairs, oldest first."""
        session = self._resolve_session(session_id)
        if session is None:
            return []
        earliest = list(reversed(session.prompts[-count:])) if count else []
        return [Interaction(prompt=p, response=_response_for(session, p.id)) for p in earliest]

    def get_prompts(
        self, session_id: str | None = None, offset: int = 0, limit: int = DEFAULT_PAGE_SIZE
    ) -> PromptPage:
        session = self._resolve_session(session_id)
        if session is None:
            return PromptPage(prompts=[], total=0, offset=offset, limit=limit)
        return PromptPage(
            prompts=session.prompts[offset: offset + limit],
            total=len(session.prompts),
            offset=offset,
            limit=limit,
        )

    def get_active_session(self) -> Session | None:
        if not self.active_session_id:
            return None
        return self.get_session(self.active_session_id)

    def get_active_project(self) -> Project | None:
        if not self.active_project_id:
            return None
        return self.projects.get(self.active_project_id)

    def get_session(self, session_id: str) -> Session | None:
        for project in self.projects.values():
            for session in project.sessions:
                if session.id == session_id:
                    return session
        return None

    def find_session_by_source_id(self, source_session_id: str) -> Session | None:
        for project in self.projects.values():
            for session in project.sessions:
                if session.source_session_id == source_session_id:
                    return session
        return None

    def find_prompt(self, prompt_id: str) -> tuple[Session, Prompt] | None:
        for project in self.projects.values():
            for session in project.sessions:
                for prompt in session.prompts:
                    if prompt.id == prompt_id:
                        return session, prompt
        return None

    def find_project_by_path(self, project_path: str) -> Project | None:
        return self.projects.get(project_id_for(project_path))

    def get_all_projects(self) -> list[Project]:
        return list(self.projects.values())

    def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    def get_sessions(
        self,
        project_id: str | None = None,
        platform: str | None = None,
        is_active: bool | None = None,
        include_empty: bool = True,
        limit: int | None = None,
    ) -> list[Session]:
        """Return sessions across projects, most recently active first."""
        sessions = []
        for project in self.projects.values():
            if project_id and project.id != project_id:
                continue
            for session in project.sessions:
                if platform and session.platform != platform:
                    continue
                if is_active is not None and session.is_recent() != is_active:
                    continue
                if not include_empty and session.prompt_count == 0:
                    continue
                sessions.append(session)
        sessions.sort(key=lambda s: s.last_activity_time, reverse=True)
        return sessions[:limit] if limit else sessions

    def get_stats(self) -> dict:
        active = self.get_active_session()
        return {
            "totalProjects": len(self.projects),
            "totalSessions": sum(len(p.sessions) for p in self.projects.values()),
            "totalPrompts": sum(p.total_prompts for p in self.projects.values()),
            "activeSession": self._summary(active) if active else None,
        }

    def get_today_stats(self) -> dict:
        """Prompt count and average score for prompts captured today (local date)."""
        today = datetime.now().astimezone().date()
        scores = []
        count = 0
        for project in self.projects.values():
            for session in project.sessions:
                for prompt in session.prompts:
                    if prompt.timestamp.astimezone().date() == today:
                        count += 1
                        if prompt.score is not None:
                            scores.append(prompt.score)
        average = round(sum(scores) / len(scores), 1) if scores else 0
        return {"promptCount": count, "averageScore": average}

    # ── Session lifecycle ────────────────────────────────────────────

    def get_or_create_session(
        self,
        project_id: str,
        platform: str,
        source_session_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> Session:
        project = self.projects.get(project_id)
        if project is None:
            raise KeyError(f"Project not found: {project_id}")

        if source_session_id:
            for session in project.sessions:
                if session.platform == platform and session.source_session_id == source_session_id:
                    return session

        now = timestamp or utcnow()
        session = Session(
            id=generate_id(),
            project_id=project_id,
            platform=platform,
            start_time=now,
            last_activity_time=now,
            metadata={"sourceSessionId": source_session_id or f"generated-{generate_id()[:12]}"},
        )
        project.sessions.insert(0, session)
        project.refresh_totals()
        self._save()
        self._emit(SESSION_CREATED, session_id=session.id, project_id=project_id)
        return session

    def switch_session(self, session_id: str) -> Session | None:
        session = self.get_session(session_id)
        if session is None:
            return None
        self.active_session_id = session.id
        self.active_project_id = session.project_id
        session.has_unread_activity = False
        self._save()
        self._emit(SESSION_ACTIVITY, session_id=session.id, project_id=session.project_id)
        return session

    def mark_session_as_read(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session is not None and session.has_unread_activity:
            session.has_unread_activity = False
            self._save()
            self._emit(
                SESSION_UPDATED,
                session_id=session_id,
                project_id=session.project_id,
                data={"hasUnreadActivity": False},
            )

    def set_goal(self, goal: str, session_id: str | None = None) -> None:
        session = self._resolve_session(session_id)
        if session is None:
            raise RuntimeError("No active session")
        session.goal = goal
        session.goal_set_at = utcnow()
        session.goal_completed_at = None
        self._save()
        self._emit(GOAL_SET, session_id=session.id, project_id=session.project_id, data={"goal": goal})

    def complete_goal(self, session_id: str | None = None) -> None:
        session = self._resolve_session(session_id)
        if session is None or not session.goal:
            raise RuntimeError("No active session or goal")
        session.goal_completed_at = utcnow()
        self._save()
        self._emit(GOAL_COMPLETED, session_id=session.id, project_id=session.project_id)

    def update_session(self, session_id: str, **updates) -> Session | None:
        """Apply field updates to a session; identity and prompt lists are protected."""
        session = self.get_session(session_id)
        if session is None:
            return None
        for name, value in updates.items():
            if name in _PROTECTED_FIELDS or not hasattr(session, name):
                continue
            setattr(session, name, value)
        self._save()
        self._emit(SESSION_UPDATED, session_id=session_id, project_id=session.project_id, data=dict(updates))
        return session

    def delete_session(self, session_id: str) -> bool:
        for project in self.projects.values():
            for session in project.sessions:
                if session.id == session_id:
                    project.sessions.remove(session)
                    project.refresh_totals()
                    if self.active_session_id == session_id:
                        self.active_session_id = None
                    self._save()
                    self._emit(SESSION_UPDATED, session_id=session_id, project_id=project.id, data={"deleted": True})
                    return True
        return False

    # ── Private helpers ──────────────────────────────────────────────

    def _ensure_project(self, project_path: str, project_name: str | None = None) -> Project:
        project_id = project_id_for(project_path)
        project = self.projects.get(project_id)
        if project is None:
            name = project_name or os.path.basename(project_path.rstrip("/\\")) or project_path
            project = Project(id=project_id, name=name, path=project_path)
            self.projects[project_id] = project
            logger.info("Created project %s (%s)", name, project_id)
            self._emit(PROJECT_CREATED, project_id=project_id)
        return project

    def _add_prompt(
        self, session: Session, project: Project, text: str, timestamp: datetime, prompt_id: str | None
    ) -> Prompt:
        prompt = Prompt(
            id=prompt_id or generate_id(),
            session_id=session.id,
            text=text,
            truncated_text=truncate_text(text, PROMPT_TRUNCATE_LENGTH),
            timestamp=timestamp,
        )
        session.prompts.insert(0, prompt)
        session.prompts.sort(key=lambda p: p.timestamp, reverse=True)
        session.recount_prompts()
        session.touch()
        if session.id != self.active_session_id:
            session.has_unread_activity = True
        project.refresh_totals()
        self._save()
        self._emit(
            PROMPT_ADDED,
            session_id=session.id,
            project_id=project.id,
            prompt_id=prompt.id,
            data={"actualPrompt": is_actual_user_prompt(text)},
        )
        return prompt

    def _refresh_project(self, project_id: str) -> None:
        project = self.projects.get(project_id)
        if project is not None:
            project.refresh_totals()

    def _resolve_session(self, session_id: str | None) -> Session | None:
        if session_id:
            return self.get_session(session_id)
        return self.get_active_session()

    def _summary(self, session: Session) -> dict:
        project = self.projects.get(session.project_id)
        return {
            "id": session.id,
            "projectName": project.name if project else "Unknown",
            "platform": session.platform,
            "startTime": session.start_time.isoformat(),
            "durationMinutes": round((session.last_activity_time - session.start_time).total_seconds() / 60),
            "promptCount": session.prompt_count,
            "averageScore": session.average_score or 0,
            "isActive": session.is_recent(),
            "goal": session.goal,
        }

    def _save(self) -> None:
        if self.autosave:
            self.save()

    def _emit(self, event_type: str, **kwargs) -> None:
        event = SessionEvent(type=event_type, **kwargs)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s", event_type)


def _response_for(session: Session, prompt_id: str) -> Response | None:
    for response in session.responses:
        if response.prompt_id == prompt_id:
            return response
    return None


def _average_score(prompts: list[Prompt]) -> float | None:
    scores = [p.score for p in prompts if p.score is not None]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)
