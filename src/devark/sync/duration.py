"""Active-time estimate for a session from its message timestamps."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

MAX_ACTIVE_GAP_SECONDS = 15 * 60
MAX_SESSION_SECONDS = 8 * 60 * 60


@dataclass
class DurationResult:
    duration_seconds: int = 0
    active_gaps: int = 0
    idle_gaps: int = 0


def calculate_duration(timestamps: Iterable[datetime | None]) -> DurationResult:
    """Sum the gaps between consecutive messages, ignoring idle breaks.

    Gaps longer than 15 minutes are counted as idle and skipped; the total
    is capped at 8 hours.
    """
    times = [t for t in timestamps if t is not None]
    result = DurationResult()
    if len(times) < 2:
        return result

    total = 0
    for previous, current in zip(times, times[1:]):
        gap = int((current - previous).total_seconds())
        if gap <= 0:
            continue
        if gap <= MAX_ACTIVE_GAP_SECONDS:
            total += gap
            result.active_gaps += 1
        else:
            result.idle_gaps += 1

    result.duration_seconds = min(total, MAX_SESSION_SECONDS)
    return result
