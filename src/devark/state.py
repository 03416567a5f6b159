"""Process-wide key/value state that survives restarts."""

import json
import logging
from pathlib import Path
from typing import Any

from .config import get_state_path

logger = logging.getLogger(__name__)


class GlobalState:
    """A small JSON document of keyed values, rewritten in full on every update."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_state_path()
        self._data: dict[str, Any] | None = None

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def update(self, key: str, value: Any) -> None:
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._write(data)

    def keys(self) -> list[str]:
        return list(self._load().keys())

    # ── Private helpers ──────────────────────────────────────────────

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        self._data = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    self._data = loaded
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
        return self._data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        tmp.replace(self.path)
