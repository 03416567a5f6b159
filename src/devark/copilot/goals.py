"""Goal inference and goal-progress analysis for sessions."""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..core import Prompt, Response, Session
from ..sessions import SessionManager
from .base_tool import BaseCopilotTool, PromptContext

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 500
MAX_RESPONSE_PREVIEW = 300
MAX_INTERACTIONS = 8
MIN_PROMPTS_FOR_PROGRESS = 1
PROGRESS_INTERVAL = 3
PROGRESS_DEBOUNCE_SECONDS = 30.0

_GIT_PUSH_RE = re.compile(r"git\s+push|pushed\s+to|push.*remote", re.I)
_PR_RE = re.compile(r"pr\s+(created|opened|merged)|pull\s+request\s+(created|opened|merged)", re.I)
_TESTS_RE = re.compile(r"all\s+tests\s+pass|tests\s+passed|test.*complete", re.I)
_BUILD_RE = re.compile(r"build\s+(successful|complete)|compiled\s+successfully|no\s+errors", re.I)
_COMMIT_RE = re.compile(r"git\s+commit|committed", re.I)


@dataclass
class GoalInference:
    suggested_goal: str
    confidence: float
    detected_theme: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "suggestedGoal": self.suggested_goal,
            "confidence": self.confidence,
            "detectedTheme": self.detected_theme,
        }


@dataclass
class GoalProgressResult:
    progress: int
    reasoning: str
    session_title: Optional[str] = None
    inferred_goal: Optional[str] = None
    accomplishments: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "progress": self.progress,
            "reasoning": self.reasoning,
            "sessionTitle": self.session_title,
            "inferredGoal": self.inferred_goal,
            "accomplishments": list(self.accomplishments),
            "remaining": list(self.remaining),
        }


def _clean(text: str, limit: int) -> str:
    cleaned = re.sub(r"\s+", " ", (text or "").strip())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: limit - 3] + "..."


def completion_signals(response: Response | None) -> list[str]:
    """Evidence of finished work in a response: pushes, PRs, passing tests, builds, commits."""
    if response is None or not response.response:
        return []
    text = response.response
    has_bash = any(name.lower() == "bash" for name in response.tool_names)
    signals = []
    if has_bash and _GIT_PUSH_RE.search(text):
        signals.append("git_push")
    if _PR_RE.search(text):
        signals.append("pr_created")
    if _TESTS_RE.search(text):
        signals.append("tests_passed")
    if _BUILD_RE.search(text):
        signals.append("build_success")
    if has_bash and _COMMIT_RE.search(text):
        signals.append("committed")
    return signals


def format_duration(session: Session) -> str:
    minutes = int((session.last_activity_time - session.start_time).total_seconds() // 60)
    if minutes < 1:
        return "<1 minute"
    if minutes < 60:
        return f"{minutes} minutes"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if mins else f"{hours}h"


class GoalInferenceTool(BaseCopilotTool[Session, GoalInference]):
    """Suggests a session goal from its opening prompts."""

    tool_name = "GoalInference"
    temperature = 0.3
    max_tokens = 300

    def validate_input(self, session: Session) -> None:
        if session is None or not session.prompts:
            raise ValueError(f"{self.tool_name}: Session has no prompts")

    def build_prompt(self, session: Session, context: PromptContext | None = None) -> str:
        opening = list(reversed(session.prompts[-3:]))
        lines = "\n".join(f'{i}. "{_clean(p.text, MAX_PROMPT_LENGTH)}"' for i, p in enumerate(opening, 1))
        stack = f"\nTech stack: {', '.join(context.tech_stack)}" if context and context.tech_stack else ""
        return (
            "Infer what the developer is trying to accomplish in this coding session.\n\n"
            f"## Opening prompts\n{lines}{stack}\n\n"
            "Respond with JSON only:\n"
            '{"suggestedGoal": "<one short sentence, imperative>", '
            '"confidence": <number 0-1>, '
            '"detectedTheme": "<one or two words, e.g. Bug Fix, Feature, Refactoring>"}'
        )

    def parse_response(self, content: str) -> GoalInference:
        parsed = self.parse_json(content)
        if not isinstance(parsed, dict):
            raise ValueError(f"{self.tool_name}: Expected a JSON object")
        goal = parsed.get("suggestedGoal")
        if not isinstance(goal, str) or not goal.strip():
            raise ValueError(f'{self.tool_name}: Missing "suggestedGoal"')
        try:
            confidence = float(parsed.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        theme = parsed.get("detectedTheme")
        return GoalInference(
            suggested_goal=goal.strip()[:200],
            confidence=max(0.0, min(1.0, confidence)),
            detected_theme=theme if isinstance(theme, str) and theme else None,
        )


@dataclass
class GoalProgressInput:
    session: Session
    explicit_goal: Optional[str] = None


class GoalProgressAnalyzer(BaseCopilotTool[GoalProgressInput, GoalProgressResult]):
    """Estimates 0-100 progress toward the session goal from sampled interactions."""

    tool_name = "GoalProgressAnalyzer"

    async def analyze_progress(self, session: Session, explicit_goal: str | None = None) -> GoalProgressResult:
        if session.prompt_count == 0 or not session.prompts:
            return GoalProgressResult(progress=0, reasoning="Session has no prompts yet.")
        return await self.execute(GoalProgressInput(session, explicit_goal))

    def validate_input(self, data: GoalProgressInput) -> None:
        if data.session is None:
            raise ValueError(f"{self.tool_name}: Session is required")

    def build_prompt(self, data: GoalProgressInput, context: PromptContext | None = None) -> str:
        session = data.session
        goal = data.explicit_goal or session.goal
        first = session.prompts[-1]
        goal_line = f'Explicit goal: "{goal}"' if goal else "No explicit goal set. Infer the goal from the first prompt."
        return f"""Analyze the progress of this coding session toward its goal.

## Session Goal
{goal_line}

## First Prompt (Original Intent)
"{_clean(first.text, MAX_PROMPT_LENGTH)}"

## Session Activity ({session.prompt_count} total prompts, showing key interactions)
{self.format_interactions(session)}

## Session Stats
- Duration: {format_duration(session)}
- Total prompts: {session.prompt_count}
- Active: {"Yes (in progress)" if session.is_recent() else "No (completed/idle)"}

## Instructions
Analyze the session and estimate goal completion progress. Consider:
1. What was the original intent/goal?
2. What has been accomplished based on the responses?
3. What remains to be done?
4. Is the task complete, partially complete, or just started?

Also generate a short, descriptive title for this session (3-6 words) that captures what the developer is working on. Examples: "Auth Login Flow", "Fix API Timeout Bug", "Refactor User Service", "Add Dark Mode".

Respond with JSON:
{{
  "progress": <number 0-100>,
  "reasoning": "<brief 1-2 sentence explanation>",
  "sessionTitle": "<short 3-6 word title for the session>",
  "inferredGoal": "<goal if none was set, null otherwise>",
  "accomplishments": ["<key accomplishment 1>", ...],
  "remaining": ["<remaining task 1>", ...]
}}

## Progress Estimation Guidelines
- 0-20%: Just started, exploring the problem
- 20-50%: Making progress, some work done
- 50-80%: Significant progress, core work complete
- 80-95%: Nearly complete, finishing touches
- 100%: Fully complete, goal achieved

When an interaction lists "Completion signals", treat them as evidence:
- git_push: code pushed to remote
- pr_created: pull request created or merged
- tests_passed: tests passing
- build_success: build completed
- committed: code committed locally

If the LAST interaction shows git_push or pr_created and the work matches the goal, progress should be 95-100%.

JSON response:"""

    def format_interactions(self, session: Session) -> str:
        chronological = list(reversed(session.prompts))
        picked = sample_interactions(chronological)
        if not picked:
            return "(no interactions recorded)"
        blocks = []
        for n, prompt in enumerate(picked, 1):
            response = _response_for(session, prompt)
            preview = _clean(response.response, MAX_RESPONSE_PREVIEW) if response else "(no response)"
            outcome = ("success" if response.success else "error") if response else "unknown"
            block = f'{n}. Prompt: "{_clean(prompt.text, MAX_PROMPT_LENGTH)}"\n   Response ({outcome}): {preview}'
            if response and response.files_modified:
                files = response.files_modified
                more = f" (+{len(files) - 5} more)" if len(files) > 5 else ""
                block += f"\n   Files: {', '.join(files[:5])}{more}"
            signals = completion_signals(response)
            if signals:
                block += f"\n   Completion signals: {', '.join(signals)}"
            blocks.append(block)
        return "\n\n".join(blocks)

    def parse_response(self, content: str) -> GoalProgressResult:
        try:
            parsed = self.parse_json(content)
        except Exception as e:
            logger.error("Failed to parse goal progress: %s", e)
            return GoalProgressResult(progress=0, reasoning="Unable to analyze goal progress.")
        if not isinstance(parsed, dict):
            return GoalProgressResult(progress=0, reasoning="Unable to analyze goal progress.")
        try:
            progress = int(round(float(parsed.get("progress") or 0)))
        except (TypeError, ValueError):
            progress = 0
        return GoalProgressResult(
            progress=max(0, min(100, progress)),
            reasoning=parsed.get("reasoning") or "Unable to determine progress.",
            session_title=parsed.get("sessionTitle") or None,
            inferred_goal=parsed.get("inferredGoal") or None,
            accomplishments=[a for a in parsed.get("accomplishments") or [] if isinstance(a, str)],
            remaining=[r for r in parsed.get("remaining") or [] if isinstance(r, str)],
        )


def sample_interactions(prompts: list[Prompt], limit: int = MAX_INTERACTIONS) -> list[Prompt]:
    """First, last and evenly spaced middle prompts (chronological input)."""
    if len(prompts) <= 2:
        return list(prompts)
    picked = [prompts[0]]
    middle_count = min(limit - 2, len(prompts) - 2)
    step = max(1, (len(prompts) - 2) // middle_count)
    for i in range(1, middle_count + 1):
        picked.append(prompts[min(i * step, len(prompts) - 2)])
    picked.append(prompts[-1])
    return picked


def _response_for(session: Session, prompt: Prompt) -> Response | None:
    return next((r for r in session.responses if r.prompt_id == prompt.id), None)


class GoalService:
    """Runs goal inference and progress analysis against the session model."""

    def __init__(self, session_manager: SessionManager, provider, clock: Callable[[], float] = time.monotonic):
        self.session_manager = session_manager
        self.provider = provider
        self._clock = clock
        self._last_analysis: dict[str, float] = {}
        self._last_prompt_count: dict[str, int] = {}

    def get_goal_status(self) -> dict:
        session = self.session_manager.get_active_session()
        if session is None:
            return {"hasGoal": False, "isCompleted": False, "promptsSinceGoalSet": 0}
        since = (
            sum(1 for p in session.prompts if p.timestamp >= session.goal_set_at)
            if session.goal_set_at else 0
        )
        return {
            "hasGoal": bool(session.goal),
            "goalText": session.goal,
            "setAt": session.goal_set_at.isoformat() if session.goal_set_at else None,
            "isCompleted": session.goal_completed_at is not None,
            "completedAt": session.goal_completed_at.isoformat() if session.goal_completed_at else None,
            "promptsSinceGoalSet": since,
        }

    def set_goal(self, goal: str) -> None:
        self.session_manager.set_goal(goal)

    def complete_goal(self) -> None:
        self.session_manager.complete_goal()

    def clear_goal(self) -> None:
        session = self.session_manager.get_active_session()
        if session is not None:
            self.session_manager.update_session(session.id, goal=None, goal_set_at=None, goal_completed_at=None)

    async def infer_goal(self, session: Session | None = None, context: PromptContext | None = None) -> GoalInference | None:
        """Suggest a goal for a session that has none. Returns None when there is nothing to infer."""
        session = session or self.session_manager.get_active_session()
        if session is None or session.goal or not session.prompts or self.provider is None:
            return None
        return await GoalInferenceTool(self.provider).execute(session, context=context)

    async def analyze_progress(self, session_id: str | None = None) -> GoalProgressResult | None:
        """Analyze and record progress; also names the session and adopts an inferred goal."""
        session = (
            self.session_manager.get_session(session_id) if session_id
            else self.session_manager.get_active_session()
        )
        if session is None:
            logger.warning("No session found for goal progress analysis")
            return None
        if session.prompt_count == 0 or not session.prompts:
            return GoalProgressResult(progress=0, reasoning="Session has no prompts yet.")
        if self.provider is None:
            return None

        try:
            result = await GoalProgressAnalyzer(self.provider).analyze_progress(session)
        except Exception as e:
            logger.error("Goal progress analysis failed: %s", e)
            return None

        updates = {"goal_progress": result.progress}
        if result.session_title and not session.custom_name:
            updates["custom_name"] = result.session_title
        self.session_manager.update_session(session.id, **updates)
        if result.inferred_goal and not session.goal:
            self.session_manager.set_goal(result.inferred_goal, session.id)

        self._last_analysis[session.id] = self._clock()
        self._last_prompt_count[session.id] = session.prompt_count
        return result

    def should_analyze(self, session: Session) -> bool:
        """First prompt, every third prompt after that, at most once per 30 seconds."""
        if session.prompt_count < MIN_PROMPTS_FOR_PROGRESS:
            return False
        last_at = self._last_analysis.get(session.id)
        if last_at is not None and self._clock() - last_at < PROGRESS_DEBOUNCE_SECONDS:
            return False
        if last_at is None:
            return True
        return session.prompt_count - self._last_prompt_count.get(session.id, 0) >= PROGRESS_INTERVAL
