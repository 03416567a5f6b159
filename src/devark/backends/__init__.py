"""Auto-detect installed agent tools and provide a unified source registry."""

from ..provider import SessionSource
from .claude_code import ClaudeCodeSessionSource
from .cursor import CursorSessionSource

SOURCE_CLASSES = [CursorSessionSource, ClaudeCodeSessionSource]


def get_available_sources() -> list[SessionSource]:
    """Detect which agent tools have data on this machine and return their sources."""
    sources = []
    for SourceClass in SOURCE_CLASSES:
        try:
            source = SourceClass()
            if source.is_available():
                sources.append(source)
        except Exception:
            continue
    return sources


def get_all_sources() -> list[SessionSource]:
    """Return one source per known tool, installed or not."""
    return [SourceClass() for SourceClass in SOURCE_CLASSES]
