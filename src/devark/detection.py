"""Turn consumed hook files into session updates, analyses and coaching.

One pass over the hook directory handles every pending file in listing
order. A prompt is added to its session, announced, then analyzed when
auto-analysis is on. A response is linked to its prompt, stored, and
coached when response analysis is on.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .config import SETTINGS_KEY, CopilotSettings
from .context import ContextBuilder
from .copilot import AnalysisOrchestrator, CoachingService, GoalService, PromptEnhancer, PromptScorer
from .core import CapturedPrompt, Response, utcnow
from .events import HOOK_STATUS, NEW_PROMPTS_DETECTED, PROMPT_DETECTED, EventDispatcher
from .hooks import HookFileProcessor
from .linker import ConversationLinker
from .llm import LLMManager, create_default_manager
from .sessions import DEFAULT_PROJECT_NAME, SessionManager
from .state import GlobalState
from .storage import StorageManager

logger = logging.getLogger(__name__)

FollowUp = Callable[[], Awaitable[object]]


@dataclass
class PassSummary:
    prompts: int = 0
    responses: int = 0


class DetectionService:
    """Serializes hook passes so the watcher and the poll loop never interleave."""

    def __init__(
        self,
        processor: HookFileProcessor,
        dispatcher: EventDispatcher,
        session_manager: SessionManager,
        linker: ConversationLinker | None = None,
        analysis: AnalysisOrchestrator | None = None,
        coaching: CoachingService | None = None,
        goal_service: GoalService | None = None,
        settings: CopilotSettings | None = None,
    ):
        self.processor = processor
        self.dispatcher = dispatcher
        self.session_manager = session_manager
        self.linker = linker or ConversationLinker(dispatcher)
        self.analysis = analysis
        self.coaching = coaching
        self.goal_service = goal_service
        self.settings = settings or CopilotSettings()
        self.watching = False
        self.last_check: Optional[datetime] = None
        self._lock = asyncio.Lock()

    def initialize(self) -> None:
        self.processor.initialize()

    async def process_pending(self) -> PassSummary:
        """Consume every pending drop file once.

        Files are consumed under the lock; analysis and coaching run after it
        is released, so a slow provider never holds up the next pass.
        """
        summary = PassSummary()
        follow_ups: list[FollowUp] = []
        async with self._lock:
            for record in self.processor.iter_pending():
                try:
                    if record.kind == "prompt":
                        follow_up = self.ingest_prompt(record.payload)
                        summary.prompts += 1
                    else:
                        follow_up = self.ingest_response(record.payload)
                        summary.responses += 1
                except Exception:
                    logger.exception("Failed to handle hook file %s", record.filename)
                    continue
                if follow_up is not None:
                    follow_ups.append(follow_up)
            self.last_check = utcnow()

        for follow_up in follow_ups:
            try:
                await follow_up()
            except Exception:
                logger.exception("Analysis after hook pass failed")
        self.emit_status()
        if summary.prompts or summary.responses:
            logger.info("Hook pass: %d prompt(s), %d response(s)", summary.prompts, summary.responses)
        return summary

    async def handle_prompt(self, prompt: CapturedPrompt) -> None:
        follow_up = self.ingest_prompt(prompt)
        if follow_up is not None:
            await follow_up()

    async def handle_response(self, response: Response) -> None:
        follow_up = self.ingest_response(response)
        if follow_up is not None:
            await follow_up()

    def ingest_prompt(self, prompt: CapturedPrompt) -> FollowUp | None:
        """Record and announce a prompt; returns its pending analysis, if any."""
        self.linker.on_prompt(prompt)
        self._save_prompt(prompt)

        self.dispatcher.emit(PROMPT_DETECTED, {"prompt": prompt})
        self.dispatcher.emit(NEW_PROMPTS_DETECTED, {
            "count": 1,
            "prompts": [{
                "id": prompt.id,
                "text": prompt.prompt,
                "timestamp": prompt.timestamp.isoformat(),
                "model": prompt.model,
                "workspaceRoots": list(prompt.workspace_roots),
                "source": prompt.source,
            }],
        })

        if self.analysis is None or not self.settings.auto_analyze_prompts:
            return None
        session = self.session_manager.find_session_by_source_id(prompt.source_session_id or "")
        return partial(
            self.analysis.analyze_prompt,
            prompt.id,
            prompt.prompt,
            source=prompt.source,
            session_id=session.id if session else None,
            infer_goal=self.analysis.is_first_prompt(prompt.id),
        )

    def ingest_response(self, response: Response) -> FollowUp | None:
        """Link and store a response; returns its pending coaching and goal update."""
        result = self.linker.on_response(response)
        linked_id = result.linked_prompt.id if result.linked_prompt else None
        self.session_manager.add_response(response, linked_id)
        return partial(self._after_response, response, result.linked_prompt)

    def emit_status(self) -> dict:
        status = {
            "hookDir": str(self.processor.hook_dir),
            "watching": self.watching,
            "lastCheck": self.last_check.isoformat() if self.last_check else None,
            "processedCount": self.processor.processed_count,
        }
        self.dispatcher.emit(HOOK_STATUS, status)
        return status

    # ── Private helpers ──────────────────────────────────────────────

    def _save_prompt(self, prompt: CapturedPrompt) -> None:
        source_session_id = prompt.source_session_id or prompt.id
        self.session_manager.sync_from_source(
            prompt.source,
            prompt.project_path or DEFAULT_PROJECT_NAME,
            source_session_id,
            timestamp=prompt.timestamp,
        )
        self.session_manager.on_prompt_detected(
            prompt.prompt, prompt.timestamp, prompt.source, source_session_id, prompt_id=prompt.id
        )

    async def _after_response(self, response: Response, linked_prompt: CapturedPrompt | None) -> None:
        if self.coaching is not None and self.settings.auto_analyze_responses:
            outcome = await self.coaching.process_response(response, linked_prompt)
            if not outcome.generated:
                logger.debug("No coaching for %s: %s", response.id, outcome.reason)

        if self.goal_service is not None and not response.is_final:
            await self._update_goal_progress(response)

    async def _update_goal_progress(self, response: Response) -> None:
        session = None
        for key in (response.conversation_id, response.session_id):
            if key:
                session = self.session_manager.find_session_by_source_id(key)
                if session is not None:
                    break
        if session is None or not self.goal_service.should_analyze(session):
            return
        result = await self.goal_service.analyze_progress(session.id)
        if result is not None:
            logger.debug("Goal progress for %s: %d%%", session.id, result.progress)


def create_detection_service(
    hook_dir: Path | None = None,
    state: GlobalState | None = None,
    llm: LLMManager | None = None,
    storage: StorageManager | None = None,
    workspace_root: Path | None = None,
) -> DetectionService:
    """Build the full pipeline with on-disk state and the default provider."""
    state = state or GlobalState()
    settings = CopilotSettings.from_dict(state.get(SETTINGS_KEY))
    llm = llm or create_default_manager()
    dispatcher = EventDispatcher()

    session_manager = SessionManager(state)
    session_manager.load()
    storage = storage or StorageManager(state=state)
    storage.initialize()

    goal_service = GoalService(session_manager, llm)
    analysis = AnalysisOrchestrator(
        PromptScorer(llm),
        PromptEnhancer(llm),
        dispatcher,
        session_manager=session_manager,
        storage=storage,
        context_builder=ContextBuilder(session_manager, workspace_root),
        goal_service=goal_service,
        enhancement_level=settings.enhancement_level,
    )
    coaching = CoachingService(
        session_manager=session_manager,
        provider=llm,
        storage=storage,
        dispatcher=dispatcher,
        workspace_root=workspace_root,
    )
    return DetectionService(
        HookFileProcessor(hook_dir),
        dispatcher,
        session_manager,
        analysis=analysis,
        coaching=coaching,
        goal_service=goal_service,
        settings=settings,
    )
