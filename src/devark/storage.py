"""Two-tier storage for prompt analyses and coaching.

Each store keeps up to 50 records in memory (oldest insertion evicted first)
in front of one JSON file per record on disk. Evicting from memory never
touches disk; disk files are removed only by the daily retention cleanup.
"""

import json
import logging
import re
import time
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .config import LAST_CLEANUP_KEY, get_copilot_storage_path
from .core import parse_timestamp
from .state import GlobalState

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 50
RETENTION_DAYS = 7

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def _filename(record_id: str) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", record_id) + ".json"


class JsonFileStore:
    """Memory map over a directory of ``<id>.json`` files."""

    def __init__(self, directory: Path, capacity: int = MAX_CACHE_SIZE):
        self.directory = directory
        self.capacity = capacity
        self._cache: OrderedDict[str, dict] = OrderedDict()

    def initialize(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def cached_ids(self) -> list[str]:
        return list(self._cache)

    def save(self, record_id: str, record: dict) -> None:
        """Write the record to disk as a full-file replacement, then cache it."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / _filename(record_id)
        path.write_text(json.dumps(record, indent=2, default=str), encoding="utf-8")
        self._remember(record_id, record)

    def load(self, record_id: str) -> dict | None:
        """Memory first, then disk; a disk hit is cached again."""
        cached = self._cache.get(record_id)
        if cached is not None:
            return cached
        record = self._read(self.directory / _filename(record_id))
        if record is not None:
            self._remember(record_id, record)
        return record

    def recent(self, limit: int = 10, id_of: Callable[[dict, Path], str] | None = None) -> list[dict]:
        """Return up to ``limit`` records from disk, newest mtime first, caching each."""
        records = []
        for path in self._files_by_mtime()[:limit]:
            record = self._read(path)
            if record is None:
                continue
            records.append(record)
            record_id = id_of(record, path) if id_of else path.stem
            if record_id not in self._cache:
                self._remember(record_id, record)
        return records

    def delete(self, record_id: str) -> None:
        self._cache.pop(record_id, None)
        try:
            (self.directory / _filename(record_id)).unlink()
        except FileNotFoundError:
            pass

    def purge_older_than(self, cutoff: float) -> int:
        """Delete files whose mtime is before ``cutoff`` (epoch seconds)."""
        deleted = 0
        for path in self._json_files():
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    self._cache.pop(path.stem, None)
                    deleted += 1
            except OSError as e:
                logger.warning("Cleanup skipped %s: %s", path.name, e)
        return deleted

    def clear(self) -> None:
        self._cache.clear()
        for path in self._json_files():
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Failed to delete %s: %s", path.name, e)

    def stats(self) -> dict:
        files = self._json_files()
        size = 0
        for path in files:
            try:
                size += path.stat().st_size
            except OSError:
                continue
        return {"total": len(files), "cached": len(self._cache), "bytes": size}

    # ── Private helpers ──────────────────────────────────────────────

    def _remember(self, record_id: str, record: dict) -> None:
        self._cache[record_id] = record
        while len(self._cache) > self.capacity:
            self._cache.popitem(last=False)

    def _read(self, path: Path) -> dict | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Unreadable record %s: %s", path.name, e)
            return None
        return data if isinstance(data, dict) else None

    def _json_files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return [p for p in self.directory.iterdir() if p.suffix == ".json"]

    def _files_by_mtime(self) -> list[Path]:
        stamped = []
        for path in self._json_files():
            try:
                stamped.append((path.stat().st_mtime, path))
            except OSError:
                continue
        stamped.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in stamped]


def coaching_record_id(record: dict) -> str | None:
    """Coaching is keyed by prompt id, then response id."""
    return record.get("promptId") or record.get("responseId")


class StorageManager:
    """Analyses and coaching stores plus the once-a-day retention sweep."""

    def __init__(
        self,
        root: Path | None = None,
        state: GlobalState | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.root = root or get_copilot_storage_path()
        self.state = state
        self._clock = clock
        self.analyses = JsonFileStore(self.root / "analyses")
        self.coaching = JsonFileStore(self.root / "coaching")

    def initialize(self) -> None:
        self.analyses.initialize()
        self.coaching.initialize()
        self.cleanup_if_needed()

    # ── Analyses ─────────────────────────────────────────────────────

    def save_analysis(self, analysis: dict) -> None:
        self.analyses.save(analysis["id"], analysis)

    def load_analysis(self, analysis_id: str) -> dict | None:
        return self.analyses.load(analysis_id)

    def get_recent_analyses(self, limit: int = 10) -> list[dict]:
        return self.analyses.recent(limit, lambda record, path: record.get("id") or path.stem)

    def delete_analysis(self, analysis_id: str) -> None:
        self.analyses.delete(analysis_id)

    # ── Coaching ─────────────────────────────────────────────────────

    def save_coaching(self, coaching: dict) -> str:
        record_id = coaching_record_id(coaching) or f"coaching-{int(self._clock() * 1000)}"
        self.coaching.save(record_id, coaching)
        return record_id

    def load_coaching(self, prompt_id: str) -> dict | None:
        return _with_timestamp(self.coaching.load(prompt_id))

    def get_recent_coaching(self, limit: int = MAX_CACHE_SIZE) -> list[dict]:
        records = self.coaching.recent(limit, lambda record, path: coaching_record_id(record) or path.stem)
        return [_with_timestamp(r) for r in records]

    def delete_coaching(self, prompt_id: str) -> None:
        self.coaching.delete(prompt_id)

    # ── Retention ────────────────────────────────────────────────────

    def cleanup(self, older_than_days: int = RETENTION_DAYS) -> int:
        now = self._clock()
        cutoff = now - older_than_days * 24 * 3600
        deleted = self.analyses.purge_older_than(cutoff) + self.coaching.purge_older_than(cutoff)
        if self.state is not None:
            self.state.update(LAST_CLEANUP_KEY, datetime.fromtimestamp(now).astimezone().isoformat())
        if deleted:
            logger.info("Retention cleanup removed %d records", deleted)
        return deleted

    def cleanup_if_needed(self) -> bool:
        """Run cleanup unless it already ran today (local calendar date)."""
        last = self.state.get(LAST_CLEANUP_KEY) if self.state is not None else None
        last_dt = parse_timestamp(last)
        today = datetime.fromtimestamp(self._clock()).astimezone().date()
        if last_dt is not None and last_dt.astimezone().date() == today:
            return False
        self.cleanup()
        return True

    def clear_all(self) -> None:
        self.analyses.clear()
        self.coaching.clear()
        if self.state is not None:
            self.state.update(LAST_CLEANUP_KEY, None)

    def get_stats(self) -> dict:
        analyses = self.analyses.stats()
        coaching = self.coaching.stats()
        return {
            "totalAnalyses": analyses["total"],
            "cachedAnalyses": analyses["cached"],
            "totalCoaching": coaching["total"],
            "cachedCoaching": coaching["cached"],
            "storageSize": analyses["bytes"] + coaching["bytes"],
        }


def _with_timestamp(record: dict | None) -> Any:
    if record is not None and isinstance(record.get("timestamp"), str):
        record = dict(record)
        record["timestamp"] = parse_timestamp(record["timestamp"])
    return record
