"""Prompt scorer.

The provider grades four legacy dimensions (clarity, specificity, context,
actionability); the V2 result maps them onto the five weighted dimensions,
estimating constraints from the prompt text, and attaches an explanation.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Optional

from . import validator
from .base_tool import BaseCopilotTool, ProgressCallback, PromptContext
from .explainer import ScoreExplanation, ExplanationPoint, generate_explanation, quick_summary
from .scores import ScoreBreakdown, create_score_breakdown

logger = logging.getLogger(__name__)

EMPTY_PROMPT_MESSAGE = "Prompt is empty or contains only whitespace"

_SPECIFICS_RE = re.compile(
    r"\b(file|function|class|component|feature|bug|error|implement|create|add|fix|update|refactor)\b", re.I
)
_LIMITS_RE = re.compile(r"\b(must|should|need|require|limit|max|min|only|exactly|without|no |avoid|don't)\b", re.I)
_PERFORMANCE_RE = re.compile(r"\b(fast|slow|performance|efficient|optimize|ms|seconds|memory)\b", re.I)
_COMPATIBILITY_RE = re.compile(r"\b(compatible|support|work with|version|browser|device)\b", re.I)
_BOUNDARIES_RE = re.compile(r"\b(before|after|within|under|between|range)\b", re.I)

SYSTEM_PROMPT = """You are a prompt quality analyzer. Your task is to evaluate AI prompts and provide constructive feedback.

Scoring Criteria:
1. Clarity (0-10): Is the request clear and unambiguous? Are there confusing or vague parts?
2. Specificity (0-10): Is there enough detail? Are requirements well-defined?
3. Context (0-10): Is relevant background information provided? Does the AI have what it needs?
4. Actionability (0-10): Can the AI take concrete action? Is it clear what output is expected?

For each score:
- 0-3: Poor (major issues present)
- 4-6: Adequate (some improvements needed)
- 7-8: Good (minor improvements possible)
- 9-10: Excellent (professional quality)

You MUST respond with valid JSON in this exact format:
{
  "clarity": <number 0-10>,
  "specificity": <number 0-10>,
  "context": <number 0-10>,
  "actionability": <number 0-10>,
  "suggestions": ["suggestion 1", "suggestion 2", "suggestion 3"]
}

Provide 2-4 specific, actionable suggestions for improvement. Be constructive and helpful."""


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class LegacyScore:
    """Four-dimension score; ``overall`` is 0-100."""

    overall: int
    clarity: float
    specificity: float
    context: float
    actionability: float
    suggestions: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, clarity, specificity, context, actionability, suggestions) -> "LegacyScore":
        overall = _round_half_up((clarity + specificity + context + actionability) / 4 * 10)
        return cls(overall, clarity, specificity, context, actionability, suggestions)


@dataclass
class ScoreResult:
    """Full V2 score: legacy numbers plus the weighted breakdown and explanation."""

    overall: int
    clarity: float
    specificity: float
    context: float
    actionability: float
    intent: float
    constraints: float
    suggestions: list[str]
    breakdown: ScoreBreakdown
    explanation: ScoreExplanation
    summary: Optional[str] = None

    @property
    def score(self) -> float:
        """The 0-10 weighted total."""
        return self.breakdown.total

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "score": self.score,
            "clarity": self.clarity,
            "specificity": self.specificity,
            "context": self.context,
            "actionability": self.actionability,
            "intent": self.intent,
            "constraints": self.constraints,
            "suggestions": list(self.suggestions),
            "breakdown": self.breakdown.to_dict(),
            "explanation": self.explanation.to_dict(),
            "summary": self.summary,
        }


def estimate_constraints(prompt: str) -> int:
    """Estimate the constraints dimension from limit, performance and boundary words."""
    score = 3.0
    if _LIMITS_RE.search(prompt):
        score += 2
    if _PERFORMANCE_RE.search(prompt):
        score += 2
    if _COMPATIBILITY_RE.search(prompt):
        score += 1.5
    if _BOUNDARIES_RE.search(prompt):
        score += 1.5
    if len(prompt) > 100:
        score += 1
    return min(10, _round_half_up(score))


def heuristic_score(prompt: str) -> LegacyScore:
    """Score from length, question marks and technical vocabulary, without a provider."""
    length = len(prompt.strip())
    has_question = "?" in prompt
    has_context = length > 50
    has_specifics = _SPECIFICS_RE.search(prompt) is not None

    suggestions = ["AI scoring unavailable - using basic heuristics"]
    if length < 20:
        suggestions.append("Add more details to your prompt")
    if not has_question:
        suggestions.append("Consider phrasing as a clear question or instruction")
    if not has_specifics:
        suggestions.append("Include specific technical terms or requirements")
    if not has_context:
        suggestions.append("Provide relevant context or background information")

    return LegacyScore.build(
        clarity=6 if has_question else 5,
        specificity=6 if has_specifics else 4,
        context=6 if has_context else 4,
        actionability=7 if has_question and has_specifics else 5,
        suggestions=suggestions,
    )


def to_v2(prompt: str, legacy: LegacyScore) -> ScoreResult:
    constraints = estimate_constraints(prompt)
    breakdown = create_score_breakdown({
        "specificity": legacy.specificity,
        "context": legacy.context,
        "intent": legacy.clarity,
        "actionability": legacy.actionability,
        "constraints": constraints,
    })
    return ScoreResult(
        overall=legacy.overall,
        clarity=legacy.clarity,
        specificity=legacy.specificity,
        context=legacy.context,
        actionability=legacy.actionability,
        intent=legacy.clarity,
        constraints=constraints,
        suggestions=legacy.suggestions,
        breakdown=breakdown,
        explanation=generate_explanation(prompt, breakdown),
        summary=quick_summary(breakdown),
    )


def minimal_score(reason: str) -> ScoreResult:
    breakdown = create_score_breakdown({dim: 0 for dim in ("specificity", "context", "intent", "actionability", "constraints")})
    return ScoreResult(
        overall=0, clarity=0, specificity=0, context=0, actionability=0, intent=0, constraints=0,
        suggestions=[reason, "Please provide a clear, specific prompt"],
        breakdown=breakdown,
        explanation=ScoreExplanation(
            missing_elements=[ExplanationPoint("Empty prompt", reason)],
            suggestions=["Please provide a clear, specific prompt"],
        ),
        summary=quick_summary(breakdown),
    )


def fallback_score(prompt: str) -> ScoreResult:
    return to_v2(prompt, heuristic_score(prompt))


class PromptScorer(BaseCopilotTool[str, LegacyScore]):
    tool_name = "PromptScorer"

    async def score_prompt(
        self, prompt: str, on_progress: ProgressCallback | None = None, context: PromptContext | None = None
    ) -> LegacyScore:
        """Legacy four-dimension score; falls back to heuristics on any failure."""
        if not prompt or not prompt.strip():
            return LegacyScore(0, 0, 0, 0, 0, [EMPTY_PROMPT_MESSAGE, "Please provide a clear, specific prompt"])
        try:
            return await self.execute(prompt, on_progress, context)
        except Exception as e:
            logger.error("Scoring failed: %s", e)
            return heuristic_score(prompt)

    async def score_prompt_v2(
        self,
        prompt: str,
        on_progress: ProgressCallback | None = None,
        context: PromptContext | None = None,
        fallback: bool = True,
    ) -> ScoreResult:
        """Five-dimension score with explanation.

        Invalid prompts get a zeroed score. Provider or parse failures return
        the heuristic score, or propagate when ``fallback`` is False.
        """
        if not prompt or not prompt.strip():
            return minimal_score(EMPTY_PROMPT_MESSAGE)
        result = validator.validate(prompt)
        if not result.valid:
            return minimal_score(result.errors[0])
        try:
            legacy = await self.execute(prompt, on_progress, context)
        except Exception as e:
            if not fallback:
                raise
            logger.error("V2 scoring failed: %s", e)
            return fallback_score(prompt)
        return to_v2(prompt, legacy)

    def build_prompt(self, prompt: str, context: PromptContext | None = None) -> str:
        hints = _context_hints(context) if context else []
        context_block = "\n\nContext for evaluation:\n" + "\n".join(hints) if hints else ""
        return (
            f"{SYSTEM_PROMPT}{context_block}\n\n"
            "Analyze this AI prompt and score it on four criteria (0-10 each):\n\n"
            f'Prompt to analyze:\n"{prompt}"\n\n'
            "Evaluate the prompt and return your scores in JSON format."
        )

    def parse_response(self, content: str) -> LegacyScore:
        parsed = self.parse_json(content)
        if not isinstance(parsed, dict):
            raise ValueError(f"{self.tool_name}: Expected a JSON object")
        scores = {name: _validate_score(parsed.get(name), name)
                  for name in ("clarity", "specificity", "context", "actionability")}
        suggestions = [s for s in parsed.get("suggestions") or [] if isinstance(s, str)]
        return LegacyScore.build(
            suggestions=suggestions or ["Consider adding more specific details to your prompt"],
            **scores,
        )


def _validate_score(value, name: str) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {name} score: not a number")
    if math.isnan(score):
        raise ValueError(f"Invalid {name} score: not a number")
    if score < 0 or score > 10:
        raise ValueError(f"Invalid {name} score: must be between 0 and 10")
    return score


def _context_hints(context: PromptContext) -> list[str]:
    hints = []
    if context.tech_stack:
        hints.append(f"Note: User is working with {', '.join(context.tech_stack)}.")
    if context.goal:
        hints.append(f'Note: User\'s current goal is "{context.goal}".')
    if context.recent_topics:
        hints.append(f"Note: User has already discussed: {', '.join(context.recent_topics[:3])}.")
    if context.first_interactions:
        first = context.first_interactions[0]
        hints.append(f'Note: Session started with: "{first.prompt[:100]}..."')
        if first.response:
            hints.append(f"Initial response addressed: {', '.join(first.files_modified) or 'general discussion'}")
    recent = [
        f'[{i + 1}] User: "{item.prompt[:80]}..." -> AI: '
        + (f"responded ({len(item.files_modified)} files)" if item.response else "no response yet")
        for i, item in enumerate(context.last_interactions)
        if item.prompt
    ]
    if recent:
        hints.append("Recent conversation:\n" + "\n".join(recent))
    return hints
