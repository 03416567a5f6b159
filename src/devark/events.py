"""Typed pub/sub for prompt, response and analysis events."""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Hook ingestion
PROMPT_DETECTED = "promptDetected"
NEW_PROMPTS_DETECTED = "newPromptsDetected"
RESPONSE_DETECTED = "responseDetected"
FINAL_RESPONSE_DETECTED = "finalResponseDetected"
HOOK_STATUS = "hookStatus"

# Prompt analysis lifecycle
PROMPT_ANALYZING = "promptAnalyzing"
SCORE_RECEIVED = "scoreReceived"
ENHANCED_PROMPT_READY = "enhancedPromptReady"
ENHANCED_SCORE_READY = "enhancedScoreReady"
GOAL_INFERENCE = "v2GoalInference"
ANALYSIS_COMPLETE = "analysisComplete"
ANALYSIS_FAILED = "analysisFailed"

# Coaching
COACHING_UPDATED = "coachingUpdated"

EVENT_TYPES = frozenset({
    PROMPT_DETECTED,
    NEW_PROMPTS_DETECTED,
    RESPONSE_DETECTED,
    FINAL_RESPONSE_DETECTED,
    HOOK_STATUS,
    PROMPT_ANALYZING,
    SCORE_RECEIVED,
    ENHANCED_PROMPT_READY,
    ENHANCED_SCORE_READY,
    GOAL_INFERENCE,
    ANALYSIS_COMPLETE,
    ANALYSIS_FAILED,
    COACHING_UPDATED,
})

Listener = Callable[[dict[str, Any]], Any]


class EventDispatcher:
    """Per-event listener lists. Emission never raises."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event_type]:
                self._listeners[event_type].remove(listener)

        return unsubscribe

    def on_any(self, listener: Callable[[str, dict[str, Any]], Any]) -> Callable[[], None]:
        """Register a listener for every event type."""
        unsubscribers = [
            self.on(event_type, lambda data, et=event_type: listener(et, data))
            for event_type in EVENT_TYPES
        ]

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        return unsubscribe

    def emit(self, event_type: str, data: dict[str, Any]) -> None:
        for listener in list(self._listeners.get(event_type, ())):
            try:
                listener(data)
            except Exception:
                logger.exception("Listener for %s failed", event_type)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))
