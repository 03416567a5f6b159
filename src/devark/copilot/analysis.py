"""Per-prompt analysis: score, enhance and infer a goal concurrently.

Each branch emits its own event as soon as it finishes, so subscribers see
partial results in whatever order they arrive. ``analysisComplete`` is
emitted last, after the merged record has been written to the session model
and the analyses store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable, Optional

from ..core import truncate_text, utcnow
from ..errors import ProviderNotConfiguredError, friendly_error_message
from ..events import (
    ANALYSIS_COMPLETE,
    ANALYSIS_FAILED,
    ENHANCED_PROMPT_READY,
    ENHANCED_SCORE_READY,
    GOAL_INFERENCE,
    PROMPT_ANALYZING,
    SCORE_RECEIVED,
    EventDispatcher,
)
from ..sessions import SessionManager
from ..storage import StorageManager
from . import validator
from .base_tool import PromptContext
from .enhancer import PromptEnhancer
from .goals import GoalInference, GoalService
from .scorer import PromptScorer, ScoreResult, fallback_score

if TYPE_CHECKING:
    from ..context import ContextBuilder

logger = logging.getLogger(__name__)

TRUNCATED_LENGTH = 50
MAX_QUICK_WINS = 3


@dataclass
class EnhancementOutcome:
    text: str
    score: Optional[float] = None


def quick_wins(suggestions: list[str]) -> list[str]:
    """The first three words of each of the first three suggestions."""
    return [" ".join(s.split()[:3]) for s in suggestions[:MAX_QUICK_WINS] if s.strip()]


def category_scores(result: ScoreResult) -> dict:
    return {
        "clarity": result.clarity,
        "specificity": result.specificity,
        "context": result.context,
        "actionability": result.actionability,
    }


class AnalysisOrchestrator:
    """Runs the scorer, enhancer and goal service for one prompt at a time."""

    def __init__(
        self,
        scorer: PromptScorer,
        enhancer: PromptEnhancer,
        dispatcher: EventDispatcher,
        session_manager: SessionManager | None = None,
        storage: StorageManager | None = None,
        context_builder: ContextBuilder | None = None,
        goal_service: GoalService | None = None,
        enhancement_level: str = "medium",
        today: Callable[[], date] = lambda: datetime.now().astimezone().date(),
    ):
        self.scorer = scorer
        self.enhancer = enhancer
        self.dispatcher = dispatcher
        self.session_manager = session_manager
        self.storage = storage
        self.context_builder = context_builder
        self.goal_service = goal_service
        self.enhancement_level = enhancement_level
        self._today = today
        self._analyzed_on: date | None = None
        self._analyzed_today = 0

    @property
    def analyzed_today(self) -> int:
        if self._analyzed_on != self._today():
            return 0
        return self._analyzed_today

    def provider_available(self) -> bool:
        provider = self.scorer.provider
        if provider is None:
            return False
        is_available = getattr(provider, "is_available", None)
        if callable(is_available):
            return is_available()
        is_configured = getattr(provider, "is_configured", None)
        return is_configured() if callable(is_configured) else True

    async def analyze_prompt(
        self,
        prompt_id: str,
        text: str,
        source: str | None = None,
        session_id: str | None = None,
        infer_goal: bool | None = None,
    ) -> ScoreResult:
        """Analyze one prompt; always returns a score, even when the provider fails."""
        self.dispatcher.emit(PROMPT_ANALYZING, {"promptId": prompt_id, "text": text})

        if not self.provider_available():
            return self._fail(prompt_id, text, ProviderNotConfiguredError())

        context = await self.context_builder.build(text) if self.context_builder else None
        if infer_goal is None:
            infer_goal = self.is_first_prompt(prompt_id)

        score_result, enhancement, _ = await asyncio.gather(
            self._score(prompt_id, text, context),
            self._enhance(prompt_id, text, context),
            self._infer_goal(prompt_id, context) if infer_goal else _nothing(),
            return_exceptions=True,
        )
        for outcome in (score_result, enhancement):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        if isinstance(score_result, Exception):
            return self._fail(prompt_id, text, score_result)
        if isinstance(enhancement, Exception):
            logger.warning("Enhancement for %s failed: %s", prompt_id, enhancement)
            enhancement = None

        self._persist(prompt_id, text, score_result, enhancement)
        self._count_analysis()

        record = self._record(prompt_id, text, score_result, enhancement, source, session_id)
        self.dispatcher.emit(ANALYSIS_COMPLETE, {"prompt": record, "analyzedToday": self.analyzed_today})
        logger.info("Analyzed prompt %s: %.1f/10", prompt_id, score_result.score)
        return score_result

    # ── Branches ─────────────────────────────────────────────────────

    async def _score(self, prompt_id: str, text: str, context: PromptContext | None) -> ScoreResult:
        result = await self.scorer.score_prompt_v2(text, context=context, fallback=False)
        self.dispatcher.emit(SCORE_RECEIVED, {
            "promptId": prompt_id,
            "score": result.score,
            "categoryScores": category_scores(result),
            "breakdown": result.breakdown.to_dict(),
            "explanation": result.explanation.to_dict(),
        })
        return result

    async def _enhance(self, prompt_id: str, text: str, context: PromptContext | None) -> EnhancementOutcome | None:
        if not validator.validate(text).valid:
            return None
        enhanced = await self.enhancer.enhance_prompt(text, self.enhancement_level, context=context)
        if enhanced.failed:
            logger.debug("Enhancement skipped for %s: %s", prompt_id, enhanced.error)
            return None
        self.dispatcher.emit(ENHANCED_PROMPT_READY, {"promptId": prompt_id, "improvedVersion": enhanced.enhanced})

        outcome = EnhancementOutcome(text=enhanced.enhanced)
        try:
            enhanced_score = await self.scorer.score_prompt_v2(enhanced.enhanced, context=context, fallback=False)
        except Exception as e:
            logger.warning("Scoring the enhanced prompt %s failed: %s", prompt_id, e)
            return outcome
        outcome.score = enhanced_score.score
        self.dispatcher.emit(ENHANCED_SCORE_READY, {"promptId": prompt_id, "improvedScore": outcome.score})
        return outcome

    async def _infer_goal(self, prompt_id: str, context: PromptContext | None) -> GoalInference | None:
        if self.goal_service is None:
            return None
        session = self._session_for(prompt_id)
        try:
            inference = await self.goal_service.infer_goal(session, context)
        except Exception as e:
            logger.debug("Goal inference for %s failed: %s", prompt_id, e)
            return None
        if inference is not None and inference.suggested_goal:
            self.dispatcher.emit(GOAL_INFERENCE, inference.to_dict())
        return inference

    # ── Private helpers ──────────────────────────────────────────────

    def _fail(self, prompt_id: str, text: str, error: Exception) -> ScoreResult:
        logger.error("Analysis of prompt %s failed: %s", prompt_id, error)
        self.dispatcher.emit(ANALYSIS_FAILED, {"promptId": prompt_id, "error": friendly_error_message(error)})
        return fallback_score(text)

    def _persist(
        self, prompt_id: str, text: str, result: ScoreResult, enhancement: EnhancementOutcome | None
    ) -> None:
        if self.session_manager is not None:
            self.session_manager.update_prompt_score(
                prompt_id,
                result.score,
                result.breakdown.to_dict(),
                enhancement.text if enhancement else None,
                enhancement.score if enhancement else None,
            )
            self.session_manager.update_prompt_details(
                prompt_id, quick_wins(result.suggestions), result.explanation.to_dict()
            )
        if self.storage is not None:
            record = result.to_dict()
            record.update({
                "id": prompt_id,
                "promptId": prompt_id,
                "text": text,
                "timestamp": utcnow().isoformat(),
                "improvedVersion": enhancement.text if enhancement else None,
                "improvedScore": enhancement.score if enhancement else None,
            })
            try:
                self.storage.save_analysis(record)
            except OSError as e:
                logger.error("Failed to save analysis %s: %s", prompt_id, e)

    def _record(
        self,
        prompt_id: str,
        text: str,
        result: ScoreResult,
        enhancement: EnhancementOutcome | None,
        source: str | None,
        session_id: str | None,
    ) -> dict:
        return {
            "id": prompt_id,
            "text": text,
            "truncatedText": truncate_text(text, TRUNCATED_LENGTH),
            "score": result.score,
            "timestamp": utcnow().isoformat(),
            "categoryScores": category_scores(result),
            "quickWins": quick_wins(result.suggestions),
            "breakdown": result.breakdown.to_dict(),
            "explanation": result.explanation.to_dict(),
            "improvedVersion": enhancement.text if enhancement else None,
            "improvedScore": enhancement.score if enhancement else None,
            "source": source,
            "sessionId": session_id,
        }

    def _count_analysis(self) -> None:
        today = self._today()
        if self._analyzed_on != today:
            self._analyzed_on = today
            self._analyzed_today = 0
        self._analyzed_today += 1

    def _session_for(self, prompt_id: str):
        if self.session_manager is None:
            return None
        found = self.session_manager.find_prompt(prompt_id)
        return found[0] if found else self.session_manager.get_active_session()

    def is_first_prompt(self, prompt_id: str) -> bool:
        session = self._session_for(prompt_id)
        return session is not None and not session.goal and session.prompt_count <= 1


async def _nothing() -> None:
    return None
