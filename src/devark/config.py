"""Platform-aware path resolution and settings for devark."""

import os
import sys
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path

HOOK_DIR_NAME = "devark-hooks"
DEFAULT_API_URL = "https://app.devark.ai"
DEFAULT_LLM_MODEL = "claude-sonnet-4-20250514"

# Global state keys
SESSIONS_KEY = "copilot.sessions"
SETTINGS_KEY = "copilot.settings"
LAST_CLEANUP_KEY = "copilot.lastCleanup"
COACHING_KEY = "copilot.coaching"


def get_hook_dir() -> Path:
    """Return the directory external hook scripts drop their JSON files into."""
    env = os.environ.get("DEVARK_HOOK_DIR")
    if env:
        return Path(env)
    return Path(tempfile.gettempdir()) / HOOK_DIR_NAME


def get_data_dir() -> Path:
    """Return devark's own data directory (state, copilot storage, sync state)."""
    env = os.environ.get("DEVARK_HOME")
    if env:
        return Path(env)
    return Path.home() / ".devark"


def get_state_path() -> Path:
    """Return the global key/value state file."""
    return get_data_dir() / "state.json"


def get_copilot_storage_path() -> Path:
    """Return the root of the analysis and coaching disk stores."""
    return get_data_dir() / "copilot-v2"


def get_sync_state_path() -> Path:
    """Return the per-project sync bookkeeping file."""
    return get_data_dir() / "sync-state.json"


def get_token_path() -> Path:
    """Return the file holding the backend API token."""
    return get_data_dir() / "token"


def get_cursor_global_db_path() -> Path:
    """Return the path to Cursor's globalStorage state.vscdb."""
    env = os.environ.get("DEVARK_CURSOR_DB")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User" / "globalStorage" / "state.vscdb"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "Cursor" / "User" / "globalStorage" / "state.vscdb"
    else:  # Linux
        return Path.home() / ".config" / "Cursor" / "User" / "globalStorage" / "state.vscdb"


def get_claude_projects_path() -> Path:
    """Return the path to Claude Code's projects directory."""
    env = os.environ.get("DEVARK_CLAUDE_PATH")
    if env:
        return Path(env)

    return Path.home() / ".claude" / "projects"


def get_claude_settings_path() -> Path:
    """Return Claude Code's user-scoped settings file."""
    return Path.home() / ".claude" / "settings.json"


def get_cursor_hooks_path() -> Path:
    """Return Cursor's user-scoped hooks file."""
    return Path.home() / ".cursor" / "hooks.json"


def get_api_base_url() -> str:
    """Return the sync backend base URL."""
    return os.environ.get("DEVARK_API_URL", DEFAULT_API_URL).rstrip("/")


def get_anthropic_api_key() -> str | None:
    return os.environ.get("ANTHROPIC_API_KEY") or None


def get_llm_model() -> str:
    return os.environ.get("DEVARK_LLM_MODEL", DEFAULT_LLM_MODEL)


@dataclass
class CopilotSettings:
    """User-tunable copilot behaviour, persisted under ``copilot.settings``."""

    auto_analyze_prompts: bool = True
    auto_analyze_responses: bool = True
    enhancement_level: str = "medium"  # "light" | "medium" | "aggressive"
    poll_interval: float = 5.0  # seconds

    @classmethod
    def from_dict(cls, data: dict | None) -> "CopilotSettings":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)
