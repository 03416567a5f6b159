"""Per-project sync bookkeeping kept in ``sync-state.json``."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import get_sync_state_path
from ..core import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def _empty() -> dict[str, Any]:
    return {"projects": {}, "totalSessionsUploaded": 0}


class SyncStateStore:
    """Reads and rewrites the whole state document on every change."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_sync_state_path()

    def get_last_sync_time(self, project_path: str) -> datetime | None:
        project = self._read()["projects"].get(project_path)
        return parse_timestamp(project.get("lastSyncTime")) if project else None

    def get_global_last_sync(self) -> datetime | None:
        return parse_timestamp(self._read().get("globalLastSync"))

    def get_project_state(self, project_path: str) -> dict | None:
        return self._read()["projects"].get(project_path)

    def get_total_uploaded(self) -> int:
        return int(self._read().get("totalSessionsUploaded") or 0)

    def get_last_error(self) -> dict | None:
        return self._read().get("lastError")

    def earliest_project_sync(self) -> datetime | None:
        """The oldest per-project sync time, used as a conservative resume point."""
        times = [parse_timestamp(p.get("lastSyncTime")) for p in self._read()["projects"].values()]
        times = [t for t in times if t is not None]
        return min(times) if times else None

    def record_sync(self, project_path: str, sessions_uploaded: int, last_session_id: str | None = None) -> None:
        state = self._read()
        now = utcnow().isoformat()
        project = state["projects"].setdefault(
            project_path, {"projectPath": project_path, "sessionsUploaded": 0}
        )
        project["lastSyncTime"] = now
        project["sessionsUploaded"] = int(project.get("sessionsUploaded") or 0) + sessions_uploaded
        project["lastSessionId"] = last_session_id
        state["globalLastSync"] = now
        state["totalSessionsUploaded"] = int(state.get("totalSessionsUploaded") or 0) + sessions_uploaded
        self._write(state)

    def record_error(self, message: str, code: str | None = None) -> None:
        state = self._read()
        state["lastError"] = {"time": utcnow().isoformat(), "message": message, "code": code}
        self._write(state)

    def clear(self) -> None:
        self._write(_empty())

    # ── Private helpers ──────────────────────────────────────────────

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return _empty()
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable sync state %s: %s", self.path, e)
            return _empty()
        if not isinstance(data, dict):
            return _empty()
        data.setdefault("projects", {})
        data.setdefault("totalSessionsUploaded", 0)
        return data

    def _write(self, state: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(state, indent=2), encoding="utf-8")
