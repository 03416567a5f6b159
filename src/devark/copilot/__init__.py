"""Provider-backed prompt scoring, enhancement, goals and coaching."""

from .analysis import AnalysisOrchestrator
from .coaching import CoachingConfig, CoachingData, CoachingResult, CoachingService, CoachingSuggestion
from .enhancer import PromptEnhancer
from .goals import GoalService
from .scorer import PromptScorer, ScoreResult

__all__ = [
    "AnalysisOrchestrator",
    "CoachingConfig",
    "CoachingData",
    "CoachingResult",
    "CoachingService",
    "CoachingSuggestion",
    "GoalService",
    "PromptEnhancer",
    "PromptScorer",
    "ScoreResult",
]
