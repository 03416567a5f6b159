"""Hook drop-file processor.

External agent hooks write one JSON record per file into the hook directory:

- ``prompt-*.json`` (Cursor) and ``claude-prompt-*.json`` (Claude Code) for prompts
- ``cursor-response-*.json``, ``cursor-response-final-*.json`` and
  ``claude-response-*.json`` for responses; ``-response-final-`` marks a stop hook
- ``latest-*.json`` pointer files, which are never consumed

Each file is parsed, de-duplicated by filename and by record id, deleted, and
yielded exactly once.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

from .config import get_hook_dir
from .core import CLAUDE_CODE, CURSOR, CapturedPrompt, Response, normalize_project_path

logger = logging.getLogger(__name__)

PROMPT_PREFIXES = ("claude-prompt-", "prompt-")
RESPONSE_PREFIXES = ("cursor-response-final-", "cursor-response-", "claude-response-")

SKIP_FILES = frozenset({
    "latest-prompt.json",
    "latest-claude-prompt.json",
    "latest-response.json",
    "latest-cursor-response.json",
    "latest-cursor-response-final.json",
    "latest-claude-response.json",
})

IGNORED_PROJECT_PATTERNS = (
    "devark-temp-prompt-analysis",
    "devark-hooks",
    "/programs/cursor",
    "/appdata/local/programs/cursor",
)

MAX_PROCESSED_IDS = 200


@dataclass
class HookRecord:
    """A parsed drop file, ready for dispatch."""

    kind: str  # "prompt" | "response"
    filename: str
    payload: Union[CapturedPrompt, Response]


def is_prompt_file(name: str) -> bool:
    return name.endswith(".json") and name.startswith(PROMPT_PREFIXES)


def is_response_file(name: str) -> bool:
    return name.endswith(".json") and name.startswith(RESPONSE_PREFIXES)


def is_final_response_file(name: str) -> bool:
    return "-response-final-" in name


def infer_source(name: str) -> str:
    """Infer the producing tool from a drop-file name."""
    if name.startswith("claude-"):
        return CLAUDE_CODE
    return CURSOR


def is_ignored_project(path: str | None) -> bool:
    """Return True for workspaces that belong to devark itself or the editor install."""
    if not path:
        return False
    normalized = normalize_project_path(path)
    return any(pattern in normalized for pattern in IGNORED_PROJECT_PATTERNS)


class HookFileProcessor:
    """Consumes drop files from the hook directory exactly once."""

    def __init__(self, hook_dir: Path | None = None):
        self.hook_dir = hook_dir or get_hook_dir()
        self._processed_files: set[str] = set()
        self._processed_ids: OrderedDict[str, None] = OrderedDict()
        self.processed_count = 0

    def initialize(self) -> None:
        """Create the hook directory if it does not exist yet."""
        self.hook_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Hook directory: %s", self.hook_dir)

    def pending_files(self) -> list[Path]:
        """Return unconsumed drop files in listing order."""
        if not self.hook_dir.is_dir():
            return []
        try:
            names = sorted(p.name for p in self.hook_dir.iterdir())
        except OSError as e:
            logger.warning("Cannot list hook directory %s: %s", self.hook_dir, e)
            return []
        return [
            self.hook_dir / name
            for name in names
            if (is_prompt_file(name) or is_response_file(name))
            and name not in SKIP_FILES
            and name not in self._processed_files
        ]

    def iter_pending(self) -> Iterator[HookRecord]:
        """Yield each pending record, one file at a time."""
        for path in self.pending_files():
            record = self.process_file(path)
            if record is not None:
                yield record

    def process_file(self, path: Path) -> HookRecord | None:
        """Parse, validate, delete and mark one drop file."""
        name = path.name
        if name in SKIP_FILES or name in self._processed_files:
            return None

        is_prompt = is_prompt_file(name)
        if not is_prompt and not is_response_file(name):
            return None

        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            # Busy or permission-denied files are retried on the next pass
            logger.debug("Cannot read hook file %s yet: %s", name, e)
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Dropping malformed hook file %s: %s", name, e)
            self._consume(path)
            return None

        if not isinstance(data, dict) or not data.get("id") or (is_prompt and not data.get("prompt")):
            logger.warning("Dropping hook file %s: missing required fields", name)
            self._consume(path)
            return None

        record_id = str(data["id"])
        if record_id in self._processed_ids:
            logger.debug("Skipping already-processed record %s (%s)", record_id, name)
            self._consume(path)
            return None

        source = infer_source(name)
        if is_prompt:
            payload: Union[CapturedPrompt, Response] = CapturedPrompt.from_record(data, source)
        else:
            payload = Response.from_record(data, source, is_final=is_final_response_file(name))

        self._consume(path)
        self._mark_id(record_id)

        if is_prompt and is_ignored_project(payload.project_path):
            logger.debug("Ignoring prompt %s from excluded workspace %s", record_id, payload.project_path)
            return None

        self.processed_count += 1
        return HookRecord(kind="prompt" if is_prompt else "response", filename=name, payload=payload)

    def is_processed(self, filename: str | None = None, record_id: str | None = None) -> bool:
        if filename is not None and filename in self._processed_files:
            return True
        return record_id is not None and record_id in self._processed_ids

    # ── Private helpers ──────────────────────────────────────────────

    def _consume(self, path: Path) -> None:
        """Delete the file and remember its name even if the delete fails."""
        self._processed_files.add(path.name)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete hook file %s: %s", path.name, e)

    def _mark_id(self, record_id: str) -> None:
        self._processed_ids[record_id] = None
        self._processed_ids.move_to_end(record_id)
        while len(self._processed_ids) > MAX_PROCESSED_IDS:
            self._processed_ids.popitem(last=False)
