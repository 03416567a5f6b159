"""Coaching: 1-3 "what to do next" suggestions after each agent response.

Coaching is throttled (minimum interval between generations, plus a cooldown
after the user snoozes a toast) and guarded by an in-flight set so one
response is never coached twice concurrently. Results live in a 50-entry
memory map keyed by prompt id and are mirrored to disk through the storage
manager.
"""

import json
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .. import context as context_module
from ..core import CapturedPrompt, Response, Session, parse_timestamp, utcnow
from ..events import COACHING_UPDATED, EventDispatcher
from ..llm.base import CompletionRequest
from ..sessions import SessionManager
from ..storage import StorageManager
from .base_tool import extract_balanced
from .response_analyzer import ResponseAnalysis, analyze_response

logger = logging.getLogger(__name__)

MAX_COACHING_ENTRIES = 50
DEFAULT_MAX_SUGGESTIONS = 3
DEFAULT_MIN_CONFIDENCE = 0.3

SUGGESTION_TYPES = (
    "follow_up", "test", "error_prevention", "documentation",
    "refactor", "goal_alignment", "celebration",
)

# Result reasons
DUPLICATE = "duplicate"
THROTTLED = "throttled"
COOLDOWN = "cooldown"
ERROR_RESPONSE = "error_response"
NO_SUGGESTIONS = "no_suggestions"
ERROR = "error"

TOAST_NOT_NOW = "not_now"

COACHING_SYSTEM_PROMPT = """You are an expert coding coach analyzing a developer's AI-assisted coding session.

CRITICAL RULES:
1. NEVER give generic advice like "add tests" or "improve documentation"
2. ALWAYS reference specific files, functions, or code from the context provided
3. ALWAYS explain WHY the suggestion matters for THIS specific work
4. Make suggestions that build directly on what was just accomplished
5. If a goal is set, prioritize suggestions that advance the goal
6. Consider what the developer's prompt was trying to achieve

SUGGESTION QUALITY EXAMPLES:
- BAD: "Consider adding tests" (too generic)
- GOOD: "Write tests for the handleAuth function - specifically test the token expiration edge case you just implemented"

- BAD: "Add documentation"
- GOOD: "Add a docstring to the new validate_user_input function - document the expected input format and the validation rules"

Each suggestion must include:
- Specific file or function to work on
- Clear, actionable first step
- Why this matters NOW based on the context"""

INSTRUCTIONS = """<instructions>
Generate 1-3 coaching suggestions for what the developer should do next.
Each suggestion MUST:
1. Reference specific files, functions, or code from the context above
2. Build directly on what was just accomplished
3. Align with the session goal if set
4. Be specific and actionable (not generic)
5. Include a ready-to-use prompt

Return as JSON array:
[
  {
    "type": "test|follow_up|error_prevention|documentation|refactor|goal_alignment|celebration",
    "title": "Short action title (reference specific file/function)",
    "description": "Why this is recommended NOW for THIS specific work",
    "suggestedPrompt": "The exact prompt to use (specific to the code context)",
    "confidence": 0.0-1.0,
    "reasoning": "Why this suggestion based on the context"
  }
]

Only return the JSON array, no other text.
</instructions>"""


@dataclass
class CoachingConfig:
    min_interval: float = 3 * 60  # seconds
    cooldown_duration: float = 10 * 60
    enabled: bool = True
    show_toasts: bool = True


@dataclass
class CoachingSuggestion:
    id: str
    type: str
    title: str
    description: str
    suggested_prompt: str
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "suggestedPrompt": self.suggested_prompt,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CoachingSuggestion":
        return cls(
            id=data.get("id", ""),
            type=data.get("type", "follow_up"),
            title=data.get("title", ""),
            description=data.get("description", ""),
            suggested_prompt=data.get("suggestedPrompt", ""),
            confidence=float(data.get("confidence", 0.5)),
            reasoning=data.get("reasoning", ""),
        )


@dataclass
class CoachingData:
    analysis: ResponseAnalysis
    suggestions: list[CoachingSuggestion]
    timestamp: datetime
    response_id: str
    source: str
    prompt_id: Optional[str] = None
    prompt_text: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "analysis": self.analysis.to_dict(),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "timestamp": self.timestamp.isoformat(),
            "responseId": self.response_id,
            "promptId": self.prompt_id,
            "promptText": self.prompt_text,
            "source": self.source,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CoachingData":
        return cls(
            analysis=ResponseAnalysis.from_dict(data.get("analysis") or {}),
            suggestions=[CoachingSuggestion.from_dict(s) for s in data.get("suggestions") or []],
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            response_id=data.get("responseId", ""),
            source=data.get("source", ""),
            prompt_id=data.get("promptId"),
            prompt_text=data.get("promptText"),
            session_id=data.get("sessionId"),
        )


@dataclass
class CoachingResult:
    generated: bool
    coaching: Optional[CoachingData] = None
    reason: Optional[str] = None


@dataclass
class CoachingState:
    is_listening: bool
    current_coaching: Optional[CoachingData]
    last_updated: Optional[datetime]
    on_cooldown: bool
    cooldown_ends_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "isListening": self.is_listening,
            "currentCoaching": self.current_coaching.to_dict() if self.current_coaching else None,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "onCooldown": self.on_cooldown,
            "cooldownEndsAt": self.cooldown_ends_at,
        }


CoachingListener = Callable[[CoachingData], None]
ToastHandler = Callable[[CoachingData], Optional[str]]


# ── Suggestion parsing ───────────────────────────────────────────


def validate_suggestion_type(value) -> str:
    return value if value in SUGGESTION_TYPES else "follow_up"


def parse_suggestions(
    text: str,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
    now_ms: int | None = None,
) -> list[CoachingSuggestion]:
    """Read the first JSON array in ``text``; malformed output yields an empty list."""
    raw = extract_balanced(text, "[", "]")
    if raw is None:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error("Coaching parse error: %s", e)
        return []
    if not isinstance(parsed, list):
        return []

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suggestions = []
    for item in parsed:
        if not isinstance(item, dict) or not item.get("title") or not item.get("suggestedPrompt"):
            continue
        if _filter_confidence(item.get("confidence")) < min_confidence:
            continue
        confidence = _as_confidence(item.get("confidence"))
        suggestions.append(CoachingSuggestion(
            id=f"suggestion-{stamp}-{len(suggestions)}",
            type=validate_suggestion_type(item.get("type")),
            title=str(item["title"])[:100],
            description=str(item.get("description") or "")[:300],
            suggested_prompt=str(item["suggestedPrompt"])[:1000],
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(item.get("reasoning") or "")[:300],
        ))
    return suggestions[:max_suggestions]


def _filter_confidence(value) -> float:
    if value is None:
        return 0.5
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0


def _as_confidence(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    return number if number == number and number != 0 else 0.5


def fallback_suggestions(
    analysis: ResponseAnalysis, max_suggestions: int = DEFAULT_MAX_SUGGESTIONS, now_ms: int | None = None
) -> list[CoachingSuggestion]:
    """Deterministic suggestions used when no provider answer is usable."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suggestions = []
    if analysis.entities_modified:
        first = analysis.entities_modified[0]
        suggestions.append(CoachingSuggestion(
            id=f"fallback-test-{stamp}",
            type="test",
            title="Add tests for changes",
            description="Consider adding tests for the modified files to ensure they work correctly.",
            suggested_prompt=f"Write unit tests for the changes in {first}. Cover the main functionality and edge cases.",
            confidence=0.6,
            reasoning="Files were modified without explicit test updates",
        ))
    if analysis.outcome == "success" and analysis.entities_modified:
        suggestions.append(CoachingSuggestion(
            id=f"fallback-doc-{stamp}",
            type="documentation",
            title="Document the changes",
            description="Add comments or documentation for the new code.",
            suggested_prompt="Add docstrings to the new functions and update any relevant documentation.",
            confidence=0.5,
            reasoning="Successful changes could benefit from documentation",
        ))
    if "Bug Fix" in analysis.topics_addressed:
        suggestions.append(CoachingSuggestion(
            id=f"fallback-followup-{stamp}",
            type="follow_up",
            title="Verify the fix",
            description="Test the bug fix to ensure it works as expected.",
            suggested_prompt="Test the bug fix we just made. Verify it works correctly and doesn't introduce any regressions.",
            confidence=0.7,
            reasoning="Bug fixes should be verified",
        ))
    return suggestions[:max_suggestions]


# ── Service ──────────────────────────────────────────────────────


class CoachingService:
    def __init__(
        self,
        session_manager: SessionManager | None = None,
        provider=None,
        storage: StorageManager | None = None,
        dispatcher: EventDispatcher | None = None,
        config: CoachingConfig | None = None,
        workspace_root: Path | None = None,
        toast: ToastHandler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session_manager = session_manager
        self.provider = provider
        self.storage = storage
        self.dispatcher = dispatcher
        self.config = config or CoachingConfig()
        self.workspace_root = workspace_root
        self.toast = toast
        self._clock = clock

        self._coaching: OrderedDict[str, CoachingData] = OrderedDict()
        self._processing: set[str] = set()
        self._listeners: list[CoachingListener] = []
        self.current_prompt_id: str | None = None
        self.last_coaching_time = 0.0
        self.cooldown_until = 0.0

        if storage is not None:
            self.load_recent_from_disk()

    async def process_response(
        self,
        response: Response,
        linked_prompt: CapturedPrompt | None = None,
        force: bool = False,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        show_toast: bool = True,
    ) -> CoachingResult:
        response_id = response.id
        if response_id in self._processing:
            logger.debug("Response %s already being coached", response_id)
            return CoachingResult(False, reason=DUPLICATE)
        if not self.config.enabled and not force:
            return CoachingResult(False, reason=THROTTLED)
        if not force and not self.should_show_coaching():
            return CoachingResult(False, reason=COOLDOWN if self.is_cooldown() else THROTTLED)

        self._processing.add(response_id)
        try:
            session = self._session_for(response)
            analysis = analyze_response(response, session)
            if analysis.outcome == "error":
                return CoachingResult(False, reason=ERROR_RESPONSE)

            suggestions = await self.generate_suggestions(
                response, analysis, session, linked_prompt, max_suggestions, min_confidence
            )
            if not suggestions:
                return CoachingResult(False, reason=NO_SUGGESTIONS)

            coaching = CoachingData(
                analysis=analysis,
                suggestions=suggestions,
                timestamp=utcnow(),
                response_id=response_id,
                prompt_id=response.prompt_id,
                prompt_text=linked_prompt.prompt if linked_prompt else response.prompt_text,
                source=response.source,
                session_id=response.session_id or response.conversation_id,
            )
            key = response.prompt_id or response_id or f"coaching-{int(self._clock() * 1000)}"
            self.set_coaching_for_prompt(key, coaching)
            self.current_prompt_id = key
            self.last_coaching_time = self._clock()
            logger.info("Coaching ready for %s: %d suggestion(s)", key, len(suggestions))
            self._notify()

            if self.config.show_toasts and show_toast and self.toast is not None:
                if self.toast(coaching) == TOAST_NOT_NOW:
                    self.snooze()
            return CoachingResult(True, coaching=coaching)
        except Exception as e:
            logger.error("Error processing response %s: %s", response_id, e)
            return CoachingResult(False, reason=ERROR)
        finally:
            self._processing.discard(response_id)

    async def generate_suggestions(
        self,
        response: Response,
        analysis: ResponseAnalysis,
        session: Session | None = None,
        linked_prompt: CapturedPrompt | None = None,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ) -> list[CoachingSuggestion]:
        """Provider suggestions, falling back to the deterministic list on any failure."""
        if self.provider is None or not self._provider_available():
            return fallback_suggestions(analysis, max_suggestions)
        try:
            prompt = self.build_coaching_prompt(response, analysis, session, linked_prompt)
            result = await self.provider.generate_completion(CompletionRequest(
                prompt=prompt,
                system_prompt=COACHING_SYSTEM_PROMPT,
                temperature=0.3,
                max_tokens=1000,
            ))
            if result is None or result.error or not result.text:
                return fallback_suggestions(analysis, max_suggestions)
            suggestions = parse_suggestions(result.text, min_confidence, max_suggestions)
            return suggestions or fallback_suggestions(analysis, max_suggestions)
        except Exception as e:
            logger.error("Coaching provider error: %s", e)
            return fallback_suggestions(analysis, max_suggestions)

    def build_coaching_prompt(
        self,
        response: Response,
        analysis: ResponseAnalysis,
        session: Session | None = None,
        linked_prompt: CapturedPrompt | None = None,
    ) -> str:
        prompt_text = linked_prompt.prompt if linked_prompt else response.prompt_text
        triggering = f"<triggering_prompt>\n<text>{prompt_text[:500]}</text>\n</triggering_prompt>" if prompt_text \
            else "<triggering_prompt><text>N/A</text></triggering_prompt>"
        goal = session.goal if session and session.goal else "No goal set"
        progress = analysis.goal_progress.after if analysis.goal_progress else 0

        tech_stack, topics, duration = "unknown", "none", 0
        if session is not None:
            texts = " ".join(p.text for p in session.prompts[:10])
            tech_stack = ", ".join(context_module.extract_tech_stack(texts)) or "unknown"
            topics = ", ".join(context_module.recent_topics(session)) or "none"
            duration = round((utcnow() - session.start_time).total_seconds() / 60)

        return f"""<coaching_request>

<current_response>
<full_text>{response.response[:3000]}</full_text>
<summary>{analysis.summary}</summary>
<outcome>{analysis.outcome}</outcome>
<files_modified>{", ".join(analysis.entities_modified) or "none"}</files_modified>
<tool_calls>{", ".join(response.tool_names) or "none"}</tool_calls>
</current_response>

{triggering}

<session_goal>
<text>{goal}</text>
<progress>{progress}%</progress>
</session_goal>

{self._session_history(session)}

<session_context>
<tech_stack>{tech_stack}</tech_stack>
<recent_topics>{topics}</recent_topics>
<session_duration>{duration} minutes</session_duration>
</session_context>

{self._code_context(response, analysis)}

{INSTRUCTIONS}

</coaching_request>"""

    # ── Throttling ───────────────────────────────────────────────────

    def should_show_coaching(self) -> bool:
        if self.is_cooldown():
            return False
        return self._clock() - self.last_coaching_time >= self.config.min_interval

    def is_cooldown(self) -> bool:
        return self._clock() < self.cooldown_until

    def snooze(self) -> None:
        """The user dismissed the toast ("Not Now")."""
        self.cooldown_until = self._clock() + self.config.cooldown_duration

    def reset_cooldown(self) -> None:
        self.cooldown_until = 0.0

    def reset_processing_state(self) -> None:
        if self._processing:
            logger.info("Clearing %d stale in-flight coaching entries", len(self._processing))
        self._processing.clear()

    def is_processing(self, response_id: str) -> bool:
        return response_id in self._processing

    # ── History ──────────────────────────────────────────────────────

    def load_recent_from_disk(self) -> int:
        if self.storage is None:
            return 0
        loaded = 0
        for index, record in enumerate(reversed(self.storage.get_recent_coaching(MAX_COACHING_ENTRIES))):
            try:
                coaching = CoachingData.from_dict(record)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping unreadable coaching record: %s", e)
                continue
            key = coaching.prompt_id or coaching.response_id or f"coaching-{int(self._clock() * 1000)}-{index}"
            self._remember(key, coaching)
            loaded += 1
        return loaded

    def get_coaching_for_prompt(self, prompt_id: str) -> CoachingData | None:
        """Memory first, then disk; a disk hit is cached again."""
        cached = self._coaching.get(prompt_id)
        if cached is not None:
            return cached
        if self.storage is None:
            return None
        record = self.storage.load_coaching(prompt_id)
        if record is None:
            return None
        coaching = CoachingData.from_dict(record)
        self._remember(prompt_id, coaching)
        return coaching

    def set_coaching_for_prompt(self, prompt_id: str, coaching: CoachingData) -> None:
        self._remember(prompt_id, coaching)
        if self.storage is not None:
            try:
                self.storage.save_coaching(coaching.to_dict())
            except OSError as e:
                logger.error("Failed to save coaching to disk: %s", e)

    def set_current_prompt_id(self, prompt_id: str | None) -> None:
        self.current_prompt_id = prompt_id

    def get_current_coaching(self) -> CoachingData | None:
        if self.current_prompt_id:
            return self._coaching.get(self.current_prompt_id)
        if self._coaching:
            return next(reversed(self._coaching.values()))
        return None

    def get_state(self) -> CoachingState:
        current = self.get_current_coaching()
        cooldown = self.is_cooldown()
        return CoachingState(
            is_listening=self.config.enabled,
            current_coaching=current,
            last_updated=current.timestamp if current else None,
            on_cooldown=cooldown,
            cooldown_ends_at=self.cooldown_until if cooldown else None,
        )

    @property
    def cached_ids(self) -> list[str]:
        return list(self._coaching)

    # ── Listeners and dismissal ──────────────────────────────────────

    def subscribe(self, listener: CoachingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dismiss_suggestion(self, suggestion_id: str) -> None:
        coaching = self._coaching.get(self.current_prompt_id) if self.current_prompt_id else None
        if coaching is not None:
            coaching.suggestions = [s for s in coaching.suggestions if s.id != suggestion_id]
            self._notify()

    def dismiss_all(self) -> None:
        if self.current_prompt_id:
            self._coaching.pop(self.current_prompt_id, None)
        self.current_prompt_id = None
        self._notify()

    def clear_all(self) -> None:
        self._coaching.clear()
        self.current_prompt_id = None

    def set_enabled(self, enabled: bool) -> None:
        self.config.enabled = enabled

    def update_config(self, **changes) -> None:
        for name, value in changes.items():
            if name not in asdict(self.config):
                raise ValueError(f"Unknown coaching setting: {name}")
            setattr(self.config, name, value)

    # ── Private helpers ──────────────────────────────────────────────

    def _remember(self, key: str, coaching: CoachingData) -> None:
        if key not in self._coaching and len(self._coaching) >= MAX_COACHING_ENTRIES:
            self._coaching.popitem(last=False)
        self._coaching[key] = coaching

    def _notify(self) -> None:
        coaching = self.get_current_coaching()
        if coaching is None:
            return
        for listener in list(self._listeners):
            try:
                listener(coaching)
            except Exception:
                logger.exception("Coaching listener failed")
        if self.dispatcher is not None:
            self.dispatcher.emit(COACHING_UPDATED, {"coaching": coaching.to_dict()})

    def _provider_available(self) -> bool:
        is_available = getattr(self.provider, "is_available", None)
        if callable(is_available):
            return is_available()
        is_configured = getattr(self.provider, "is_configured", None)
        return is_configured() if callable(is_configured) else True

    def _session_for(self, response: Response) -> Session | None:
        if self.session_manager is None:
            return None
        source_id = response.conversation_id or response.session_id
        session = self.session_manager.find_session_by_source_id(source_id) if source_id else None
        return session or self.session_manager.get_active_session()

    def _session_history(self, session: Session | None) -> str:
        if session is None or self.session_manager is None:
            return "<session_history><error>Session history not available</error></session_history>"
        first = session.prompts[-1].text[:500] if session.prompts else "N/A"
        blocks = []
        for i, interaction in enumerate(self.session_manager.get_last_interactions(3, session.id), 1):
            reply = interaction.response
            blocks.append(
                f'\n<interaction index="{i}">\n'
                f"<user_prompt>{interaction.prompt.text[:400]}</user_prompt>\n"
                f"<agent_response>{(reply.response[:600] if reply and reply.response else 'No response captured')}</agent_response>\n"
                f"<files_modified>{(', '.join(reply.files_modified) if reply else '') or 'none'}</files_modified>\n"
                "</interaction>"
            )
        return (
            f"<session_history>\n<first_prompt>{first}</first_prompt>\n"
            f"<recent_interactions>{''.join(blocks)}\n</recent_interactions>\n</session_history>"
        )

    def _code_context(self, response: Response, analysis: ResponseAnalysis) -> str:
        files = response.files_modified or analysis.entities_modified
        root = self.workspace_root
        if root is None:
            base = response.cwd or (response.workspace_roots[0] if response.workspace_roots else None)
            root = Path(base) if base else None
        snippets = context_module.snippets_for_files(files, root)[:3] if files else []
        if not snippets:
            return "<code_context><no_relevant_code_found/></code_context>"
        body = "\n".join(
            f'<snippet file="{s.file_path}" entity="{s.entity_name}">\n{s.relevant_code[:500]}\n</snippet>'
            for s in snippets
        )
        return f"<code_context>\n{body}\n</code_context>"
