"""Deterministic, human-readable explanations for prompt scores."""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..core import detect_slash_command
from .scores import DIMENSION_METADATA, SCORE_THRESHOLDS, ScoreBreakdown, get_lowest_dimension

GOOD = SCORE_THRESHOLDS["good"]
EXCELLENT = SCORE_THRESHOLDS["excellent"]

VAGUE_WORDS = [
    "something", "stuff", "thing", "things", "somehow",
    "maybe", "perhaps", "probably", "kind of", "sort of",
    "whatever", "etc", "and so on", "similar",
    "good", "better", "best", "nice", "cool",
    "fix it", "make it work", "deal with",
]

ACTION_WORDS = [
    "create", "add", "implement", "build", "develop",
    "fix", "debug", "resolve", "repair",
    "update", "modify", "change", "edit", "refactor",
    "remove", "delete", "clean", "optimize",
    "test", "validate", "verify", "check",
    "explain", "describe", "document", "clarify",
]

TECH_INDICATORS = [
    "react", "vue", "angular", "svelte",
    "typescript", "javascript", "python", "rust", "go",
    "api", "database", "sql", "graphql", "rest",
    "component", "function", "class", "module",
    "file", "directory", "path", "line",
    "error", "bug", "exception", "issue",
]

CONSTRAINT_INDICATORS = [
    "must", "should", "need to", "has to", "require",
    "without", "no ", "don't", "avoid", "except",
    "limit", "max", "min", "only", "exactly",
    "before", "after", "within", "under",
    "compatible", "support", "work with",
]

# Natural-language prompts that a slash command already covers
SLASH_COMMAND_PATTERNS = [
    (re.compile(r"^(?:please\s+)?(?:make\s+a\s+)?commit", re.I), "/commit", "commit changes"),
    (re.compile(r"^(?:please\s+)?review\s+(?:the\s+)?(?:pr|pull\s*request)", re.I), "/review-pr", "review pull requests"),
    (re.compile(r"^(?:please\s+)?(?:run\s+)?(?:the\s+)?tests?", re.I), "/test", "run tests"),
    (re.compile(r"^(?:please\s+)?(?:create|make)\s+(?:a\s+)?(?:pr|pull\s*request)", re.I), "/pr", "create pull requests"),
    (re.compile(r"^(?:please\s+)?(?:help|assist)", re.I), "/help", "get help"),
]

_FILE_REF_RE = re.compile(r"\b(file|\.ts|\.js|\.py|\.tsx|\.jsx)\b", re.I)
_LINE_REF_RE = re.compile(r"line\s*\d+", re.I)
_ABSTRACT_RE = re.compile(r"\b(think|consider|thoughts|opinion|ideas)\b", re.I)


@dataclass
class ExplanationPoint:
    label: str
    description: Optional[str] = None
    dimension: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"label": self.label}
        if self.description:
            data["description"] = self.description
        if self.dimension:
            data["dimension"] = self.dimension
        return data


@dataclass
class ScoreExplanation:
    good_points: list[ExplanationPoint] = field(default_factory=list)
    missing_elements: list[ExplanationPoint] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "goodPoints": [p.to_dict() for p in self.good_points],
            "missingElements": [p.to_dict() for p in self.missing_elements],
            "suggestions": list(self.suggestions),
        }


def _contains_any(text: str, words: list[str]) -> bool:
    return any(w in text for w in words)


def generate_explanation(prompt: str, breakdown: ScoreBreakdown) -> ScoreExplanation:
    slash = detect_slash_command(prompt)
    if slash is not None:
        return slash_command_explanation(slash[0], slash[1], breakdown)

    missing = _missing_elements(prompt, breakdown)
    return ScoreExplanation(
        good_points=_good_points(prompt, breakdown),
        missing_elements=missing,
        suggestions=_suggestions(prompt, breakdown, missing),
    )


def slash_command_explanation(command: str, arguments: str | None, breakdown: ScoreBreakdown) -> ScoreExplanation:
    """Slash commands expand into full prompts, so they are explained positively."""
    good = [
        ExplanationPoint("Power-user shortcut", "Slash commands are efficient shortcuts that expand into full prompts", "actionability"),
        ExplanationPoint("Clear intent", f'Command "/{command}" explicitly states the action', "intent"),
        ExplanationPoint("Actionable command", "AI agents can execute this directly", "actionability"),
    ]
    if arguments and breakdown.specificity >= 9:
        good.append(ExplanationPoint("Context provided", f'Arguments "{arguments}" add specificity', "specificity"))
    return ScoreExplanation(
        good_points=good,
        suggestions=["Using slash commands is a best practice - they are faster and more reliable than natural language prompts"],
    )


def quick_summary(breakdown: ScoreBreakdown) -> str:
    lowest = DIMENSION_METADATA[get_lowest_dimension(breakdown)].name.lower()
    if breakdown.total >= EXCELLENT:
        return "Excellent prompt! Clear, specific, and actionable."
    if breakdown.total >= GOOD:
        return f"Good prompt. Consider improving {lowest} for better results."
    if breakdown.total >= SCORE_THRESHOLDS["fair"]:
        return f"Could be clearer. Focus on adding more {lowest}."
    return f"Needs improvement. Add more {lowest} and detail."


# ── Private helpers ──────────────────────────────────────────────


def _good_points(prompt: str, b: ScoreBreakdown) -> list[ExplanationPoint]:
    points = []
    lower = prompt.lower()

    if b.specificity >= GOOD:
        if _FILE_REF_RE.search(prompt) or _LINE_REF_RE.search(prompt):
            points.append(ExplanationPoint("Specific location", "References specific files or locations", "specificity"))
        else:
            points.append(ExplanationPoint("Good detail level", dimension="specificity"))

    if b.context >= GOOD:
        if _contains_any(lower, TECH_INDICATORS):
            points.append(ExplanationPoint("Tech context provided", "Includes relevant technical background", "context"))
        elif len(prompt) > 100:
            points.append(ExplanationPoint("Rich context", "Provides helpful background information", "context"))

    if b.intent >= GOOD and _contains_any(lower, ACTION_WORDS):
        points.append(ExplanationPoint("Clear action", "States what needs to be done", "intent"))

    if b.actionability >= GOOD:
        points.append(ExplanationPoint("Actionable request", "AI can act on this directly", "actionability"))

    if b.constraints >= GOOD and _contains_any(lower, CONSTRAINT_INDICATORS):
        points.append(ExplanationPoint("Clear boundaries", "Defines requirements and constraints", "constraints"))

    if _contains_any(prompt, ["previous", "earlier", "we discussed", "from before"]):
        points.append(ExplanationPoint("Builds on session", "References previous context"))

    return points


def _missing_elements(prompt: str, b: ScoreBreakdown) -> list[ExplanationPoint]:
    missing = []
    lower = prompt.lower()

    if b.specificity < GOOD:
        if _contains_any(lower, VAGUE_WORDS):
            missing.append(ExplanationPoint("Vague terms used", "Replace vague words with specific details", "specificity"))
        elif len(prompt) < 30:
            missing.append(ExplanationPoint("Too brief", "Add more specific details", "specificity"))
        else:
            missing.append(ExplanationPoint("Needs more specifics", dimension="specificity"))

    if b.context < GOOD:
        if not _contains_any(lower, TECH_INDICATORS):
            missing.append(ExplanationPoint("Missing tech context", "What framework/language/environment?", "context"))
        else:
            missing.append(ExplanationPoint("Need more background", "Add relevant project context", "context"))

    if b.intent < GOOD:
        if not _contains_any(lower, ACTION_WORDS) and "?" not in prompt:
            missing.append(ExplanationPoint("Unclear goal", "What do you want to achieve?", "intent"))
        else:
            missing.append(ExplanationPoint("Ambiguous intent", "Be more specific about the outcome", "intent"))

    if b.actionability < GOOD:
        if _ABSTRACT_RE.search(prompt):
            missing.append(ExplanationPoint("Too abstract", "Request concrete output", "actionability"))
        else:
            missing.append(ExplanationPoint("Hard to act on", "What should the AI produce?", "actionability"))

    if b.constraints < GOOD and not _contains_any(lower, CONSTRAINT_INDICATORS):
        missing.append(ExplanationPoint("No constraints defined", "What limitations or requirements?", "constraints"))

    return missing


def _suggestions(prompt: str, b: ScoreBreakdown, missing: list[ExplanationPoint]) -> list[str]:
    suggestions = []
    lowest = get_lowest_dimension(b)

    slash = _slash_command_suggestion(prompt)
    if slash:
        suggestions.append(slash)

    if getattr(b, lowest) < GOOD:
        suggestions.append(_dimension_suggestion(lowest, prompt))

    for element in missing[:2]:
        if element.dimension and element.dimension != lowest:
            suggestion = _dimension_suggestion(element.dimension, prompt)
            if suggestion not in suggestions:
                suggestions.append(suggestion)

    if len(suggestions) < 2 and b.total < EXCELLENT:
        if len(prompt) < 50:
            suggestions.append("Add more detail about what you want to achieve")
        elif "?" not in prompt and not _contains_any(prompt.lower(), ACTION_WORDS):
            suggestions.append("Start with a clear action verb (create, fix, update, etc.)")

    return suggestions[:3]


def _slash_command_suggestion(prompt: str) -> str | None:
    trimmed = prompt.strip()
    if len(trimmed) > 100:
        return None
    for pattern, command, description in SLASH_COMMAND_PATTERNS:
        if pattern.search(trimmed):
            return f'Use "{command}" slash command for {description} - it\'s faster and more reliable'
    return None


def _dimension_suggestion(dimension: str, prompt: str) -> str:
    lower = prompt.lower()
    if dimension == "specificity":
        if len(prompt) < 30:
            return "Add specific file names, function names, or line numbers"
        if _contains_any(lower, VAGUE_WORDS):
            return "Replace vague terms with concrete details"
        return "Be more specific about what exactly needs to change"
    if dimension == "context":
        if not _contains_any(lower, TECH_INDICATORS):
            return "Mention the technology stack or framework you're using"
        return "Add relevant background about your project structure"
    if dimension == "intent":
        if not _contains_any(lower, ACTION_WORDS):
            return "Start with a clear action verb (create, fix, refactor, etc.)"
        return "Clarify what specific outcome you want"
    if dimension == "actionability":
        if re.search(r"\b(think|consider|thoughts)\b", prompt, re.I):
            return "Request specific output (code, explanation, steps) instead of opinions"
        return "Describe what the AI should produce or change"
    if dimension == "constraints":
        return "Add requirements like performance limits, compatibility needs, or things to avoid"
    return "Add more detail to improve this prompt"
