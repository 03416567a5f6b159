"""Abstract base class for read-only external session sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .core import SourceSession

RECOVERABLE_ERROR = "RECOVERABLE_ERROR"
READ_ERROR = "READ_ERROR"


@dataclass
class ReadError:
    """A problem reading one file or database, reported instead of raised."""

    path: str
    error: str
    recoverable: bool = True

    @property
    def code(self) -> str:
        return RECOVERABLE_ERROR if self.recoverable else READ_ERROR

    def to_dict(self) -> dict:
        return {"path": self.path, "error": self.error, "recoverable": self.recoverable, "code": self.code}


@dataclass
class ReadResult:
    tool: str
    sessions: list[SourceSession] = field(default_factory=list)
    errors: list[ReadError] = field(default_factory=list)


class SessionSource(ABC):
    """Base class for the external agents' own session stores.

    Each backend (Cursor, Claude Code) implements this interface so the
    unified merge and the sync pipeline can read past sessions without
    knowing where or how the tool keeps them.
    """

    name: str  # "cursor", "claude_code"

    @abstractmethod
    def get_base_path(self) -> Path:
        """Return the file or directory where this tool stores its sessions."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this tool's data exists on this machine."""
        ...

    @abstractmethod
    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> ReadResult:
        """Return sessions sorted oldest first, plus any per-file errors."""
        ...


def filter_sessions(
    sessions: list[SourceSession],
    since: datetime | None = None,
    project_path: str | None = None,
    limit: int | None = None,
) -> list[SourceSession]:
    """Apply the common since / project / limit filters and sort by start time."""
    if since is not None:
        sessions = [s for s in sessions if s.start_time >= since]
    if project_path:
        prefix = project_path.lower()
        sessions = [s for s in sessions if s.project_path.lower().startswith(prefix)]
    sessions = sorted(sessions, key=lambda s: s.start_time)
    if limit is not None and limit > 0:
        sessions = sessions[:limit]
    return sessions
