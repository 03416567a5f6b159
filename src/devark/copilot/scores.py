"""Five-dimension prompt score breakdown.

Weights are fixed and sum to 1.0; each dimension is scored 0-10 and the
weighted total is rounded to one decimal place.
"""

import math
from dataclasses import dataclass
from typing import Optional

DIMENSIONS = ("specificity", "context", "intent", "actionability", "constraints")

SCORE_DIMENSION_WEIGHTS = {
    "specificity": 0.20,
    "context": 0.25,
    "intent": 0.25,
    "actionability": 0.15,
    "constraints": 0.15,
}

SCORE_THRESHOLDS = {
    "excellent": 8,
    "good": 6,
    "fair": 4,
    "poor": 0,
}


@dataclass(frozen=True)
class DimensionInfo:
    name: str
    description: str
    weight: float
    bad_example: str
    good_example: str


DIMENSION_METADATA = {
    "specificity": DimensionInfo(
        "Specificity", "How concrete and precise is the request?", 0.20,
        "fix the bug", "fix the null pointer in UserAuth.ts line 42",
    ),
    "context": DimensionInfo(
        "Context", "Does the AI have enough background to help?", 0.25,
        "add a feature", "in our React app using Redux, add a logout button",
    ),
    "intent": DimensionInfo(
        "Intent", "Is the goal clear and unambiguous?", 0.25,
        "deal with this code", "refactor this function to improve readability",
    ),
    "actionability": DimensionInfo(
        "Actionability", "Can the AI act on this directly?", 0.15,
        "thoughts on authentication?", "implement JWT auth with refresh token rotation",
    ),
    "constraints": DimensionInfo(
        "Constraints", "Are boundaries and requirements defined?", 0.15,
        "make it better", "optimize for <100ms response, no external deps",
    ),
}


def round1(value: float) -> float:
    """Round half up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def calculate_weighted_total(scores: dict[str, float]) -> float:
    total = sum(scores[dim] * weight for dim, weight in SCORE_DIMENSION_WEIGHTS.items())
    return round1(total)


@dataclass
class ScoreBreakdown:
    specificity: float
    context: float
    intent: float
    actionability: float
    constraints: float
    total: float
    feedback: Optional[dict] = None

    @property
    def dimensions(self) -> dict[str, float]:
        return {dim: getattr(self, dim) for dim in DIMENSIONS}

    def to_dict(self) -> dict:
        """Serialize as ``{dim: {score, weight, feedback?}, total}``."""
        data: dict = {}
        for dim in DIMENSIONS:
            entry = {"score": getattr(self, dim), "weight": SCORE_DIMENSION_WEIGHTS[dim]}
            if self.feedback and self.feedback.get(dim):
                entry["feedback"] = self.feedback[dim]
            data[dim] = entry
        data["total"] = self.total
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreBreakdown":
        scores = {}
        feedback = {}
        for dim in DIMENSIONS:
            value = data.get(dim, 0)
            if isinstance(value, dict):
                if value.get("feedback"):
                    feedback[dim] = value["feedback"]
                value = value.get("score", 0)
            scores[dim] = float(value)
        return cls(total=calculate_weighted_total(scores), feedback=feedback or None, **scores)


def create_score_breakdown(scores: dict[str, float], feedback: dict | None = None) -> ScoreBreakdown:
    return ScoreBreakdown(
        specificity=scores["specificity"],
        context=scores["context"],
        intent=scores["intent"],
        actionability=scores["actionability"],
        constraints=scores["constraints"],
        total=calculate_weighted_total(scores),
        feedback=feedback,
    )


def convert_legacy_score(clarity: float, specificity: float, context: float, actionability: float) -> ScoreBreakdown:
    """Map a 4-dimension score onto the 5-dimension form.

    Clarity becomes intent; constraints is synthesized as the mean less one.
    """
    constraints = max(0, math.floor((clarity + specificity + context + actionability) / 4 - 1 + 0.5))
    return create_score_breakdown({
        "specificity": specificity,
        "context": context,
        "intent": clarity,
        "actionability": actionability,
        "constraints": constraints,
    })


def get_score_category(score: float) -> str:
    if score >= SCORE_THRESHOLDS["excellent"]:
        return "excellent"
    if score >= SCORE_THRESHOLDS["good"]:
        return "good"
    if score >= SCORE_THRESHOLDS["fair"]:
        return "fair"
    return "poor"


def get_lowest_dimension(breakdown: ScoreBreakdown) -> str:
    return min(DIMENSIONS, key=lambda dim: getattr(breakdown, dim))


def get_highest_dimension(breakdown: ScoreBreakdown) -> str:
    return max(DIMENSIONS, key=lambda dim: getattr(breakdown, dim))
