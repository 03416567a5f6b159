"""Install devark's capture hooks into Claude Code and Cursor settings.

Hooks are always written to the user-scoped (global) settings files, never a
project's, so a prompt fires exactly one hook. Every write removes entries
that belong to devark, current or legacy, before adding fresh ones; running
an install twice leaves the same file as running it once.
"""

import json
import logging
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import get_claude_settings_path, get_cursor_hooks_path
from .core import CLAUDE_CODE, CURSOR
from .errors import HookInstallError

logger = logging.getLogger(__name__)

HOOK_SCRIPT = "devark-hook"

# Matched against lowercased commands with forward slashes
HOOK_MARKERS = (
    "vibe-log",
    "devark-sync",
    "devark-sync.js",
    "claude-hooks/user-prompt-submit.js",
    "claude-hooks/stop.js",
    "bin/devark-sync.js",
    "cursor-hooks",
    "before-submit-prompt",
    "post-response",
    HOOK_SCRIPT,
    "devark.capture",
)

CLAUDE_HOOK_TYPES = ("SessionStart", "PreCompact", "SessionEnd", "UserPromptSubmit", "Stop")
CLAUDE_DEFAULT_HOOKS = ("UserPromptSubmit", "Stop")
CURSOR_HOOK_TYPES = ("beforeSubmitPrompt", "afterAgentResponse", "stop")

# Subcommand of the capture script run by each hook
CLAUDE_COMMANDS = {
    "UserPromptSubmit": "claude-prompt",
    "Stop": "claude-stop",
    "SessionStart": "claude-session --trigger=sessionstart",
    "PreCompact": "claude-session --trigger=precompact",
    "SessionEnd": "claude-session --trigger=sessionend",
}
CURSOR_COMMANDS = {
    "beforeSubmitPrompt": "cursor-prompt",
    "afterAgentResponse": "cursor-response",
    "stop": "cursor-stop",
}


@dataclass
class InstallResult:
    success: bool = True
    hooks_installed: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)  # {hook, error, recoverable}

    def add_error(self, hook: str, error: str, recoverable: bool = True) -> None:
        self.errors.append({"hook": hook, "error": error, "recoverable": recoverable})
        self.success = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "hooksInstalled": list(self.hooks_installed),
            "errors": list(self.errors),
        }


def is_devark_command(command: Any) -> bool:
    """Return True if a hook command was written by any devark version."""
    if not isinstance(command, str):
        return False
    normalized = command.lower().replace("\\", "/")
    return any(marker in normalized for marker in HOOK_MARKERS)


def hook_command(subcommand: str) -> str:
    """Build the shell command a hook runs to invoke the capture script."""
    script = shutil.which(HOOK_SCRIPT)
    if script:
        return f'"{script}" {subcommand}'
    return f'"{sys.executable}" -m devark.capture {subcommand}'


def read_settings(path: Path) -> dict:
    """Load a JSON settings file; a missing file is an empty one."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise HookInstallError(f"Cannot parse {path}: {e}") from e
    except OSError as e:
        raise HookInstallError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise HookInstallError(f"{path} does not contain a JSON object")
    return data


def write_settings(path: Path, data: dict) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise HookInstallError(f"Cannot write {path}: {e}") from e


class ClaudeHookInstaller:
    """Manages devark's entries in ``~/.claude/settings.json``."""

    tool = CLAUDE_CODE

    def __init__(self, settings_path: Path | None = None, command_for=hook_command):
        self.settings_path = settings_path or get_claude_settings_path()
        self._command_for = command_for

    def install(self, hooks: list[str] | None = None, timeout: int | None = None) -> InstallResult:
        result = InstallResult()
        requested = list(hooks) if hooks is not None else list(CLAUDE_DEFAULT_HOOKS)
        settings = read_settings(self.settings_path)
        all_hooks = settings.setdefault("hooks", {})

        for hook in requested:
            if hook not in CLAUDE_HOOK_TYPES:
                result.add_error(hook, f"Invalid hook type for Claude: {hook}", recoverable=False)
                continue
            entry: dict[str, Any] = {"type": "command", "command": self._command_for(CLAUDE_COMMANDS[hook])}
            if timeout is not None:
                entry["timeout"] = timeout
            config = {"hooks": [entry]} if hook == "UserPromptSubmit" else {"matcher": "*", "hooks": [entry]}
            kept = [c for c in all_hooks.get(hook, []) if not _claude_config_is_ours(c)]
            all_hooks[hook] = kept + [config]
            result.hooks_installed.append(hook)

        if result.hooks_installed:
            try:
                write_settings(self.settings_path, settings)
            except HookInstallError as e:
                for hook in result.hooks_installed:
                    result.add_error(hook, str(e))
                result.hooks_installed = []
                return result
            logger.info("Installed Claude Code hooks: %s", ", ".join(result.hooks_installed))
        return result

    def uninstall(self) -> InstallResult:
        result = InstallResult()
        settings = read_settings(self.settings_path)
        all_hooks = settings.get("hooks")
        if not isinstance(all_hooks, dict):
            return result

        for hook in list(all_hooks):
            configs = all_hooks[hook]
            if not isinstance(configs, list):
                continue
            kept = [c for c in configs if not _claude_config_is_ours(c)]
            if len(kept) != len(configs):
                result.hooks_installed.append(hook)
            if kept:
                all_hooks[hook] = kept
            else:
                del all_hooks[hook]
        if not all_hooks:
            del settings["hooks"]

        write_settings(self.settings_path, settings)
        logger.info("Removed Claude Code hooks: %s", ", ".join(result.hooks_installed) or "none")
        return result

    def get_status(self) -> dict[str, bool]:
        """Map each Claude hook type to whether a devark entry is installed."""
        try:
            all_hooks = read_settings(self.settings_path).get("hooks") or {}
        except HookInstallError as e:
            logger.warning("%s", e)
            all_hooks = {}
        return {
            hook: any(_claude_config_is_ours(c) for c in all_hooks.get(hook, []))
            for hook in CLAUDE_HOOK_TYPES
        }


class CursorHookInstaller:
    """Manages devark's entries in ``~/.cursor/hooks.json``."""

    tool = CURSOR

    def __init__(self, hooks_path: Path | None = None, command_for=hook_command):
        self.hooks_path = hooks_path or get_cursor_hooks_path()
        self._command_for = command_for

    def install(self, hooks: list[str] | None = None) -> InstallResult:
        result = InstallResult()
        requested = list(hooks) if hooks is not None else list(CURSOR_HOOK_TYPES)
        config = read_settings(self.hooks_path)
        config.setdefault("version", 1)
        all_hooks = config.setdefault("hooks", {})

        for hook in requested:
            if hook not in CURSOR_HOOK_TYPES:
                result.add_error(hook, f"Invalid hook type for Cursor: {hook}", recoverable=False)
                continue
            kept = [e for e in all_hooks.get(hook, []) if not is_devark_command(_command_of(e))]
            all_hooks[hook] = kept + [{"command": self._command_for(CURSOR_COMMANDS[hook])}]
            result.hooks_installed.append(hook)

        if result.hooks_installed:
            try:
                write_settings(self.hooks_path, config)
            except HookInstallError as e:
                for hook in result.hooks_installed:
                    result.add_error(hook, str(e))
                result.hooks_installed = []
                return result
            logger.info("Installed Cursor hooks: %s", ", ".join(result.hooks_installed))
        return result

    def uninstall(self) -> InstallResult:
        result = InstallResult()
        config = read_settings(self.hooks_path)
        all_hooks = config.get("hooks")
        if not isinstance(all_hooks, dict):
            return result

        for hook in list(all_hooks):
            entries = all_hooks[hook]
            if not isinstance(entries, list):
                continue
            kept = [e for e in entries if not is_devark_command(_command_of(e))]
            if len(kept) != len(entries):
                result.hooks_installed.append(hook)
            if kept:
                all_hooks[hook] = kept
            else:
                del all_hooks[hook]

        write_settings(self.hooks_path, config)
        logger.info("Removed Cursor hooks: %s", ", ".join(result.hooks_installed) or "none")
        return result

    def get_status(self) -> dict[str, bool]:
        try:
            all_hooks = read_settings(self.hooks_path).get("hooks") or {}
        except HookInstallError as e:
            logger.warning("%s", e)
            all_hooks = {}
        return {
            hook: any(is_devark_command(_command_of(e)) for e in all_hooks.get(hook, []))
            for hook in CURSOR_HOOK_TYPES
        }


INSTALLERS = {
    CLAUDE_CODE: ClaudeHookInstaller,
    CURSOR: CursorHookInstaller,
}


def get_installer(tool: str):
    try:
        return INSTALLERS[tool]()
    except KeyError:
        raise HookInstallError(f"Unknown tool: {tool}") from None


# ── Private helpers ──────────────────────────────────────────────


def _command_of(entry: Any) -> Any:
    return entry.get("command") if isinstance(entry, dict) else None


def _claude_config_is_ours(config: Any) -> bool:
    if not isinstance(config, dict):
        return False
    return any(is_devark_command(_command_of(h)) for h in config.get("hooks") or [])
