"""Exception types and user-facing error messages."""


class DevarkError(Exception):
    """Base class for errors raised by devark."""


class ProviderNotConfiguredError(DevarkError):
    """No language-model provider is available."""

    def __init__(self, message: str = "LLM provider not configured"):
        super().__init__(message)


class ToolParseError(DevarkError):
    """A copilot tool could not recover JSON from the provider's text."""

    def __init__(self, tool_name: str, detail: str = "No valid JSON found in response"):
        self.tool_name = tool_name
        super().__init__(f"{tool_name}: Failed to parse JSON response: {detail}")


class ToolExecutionError(DevarkError):
    """A copilot tool exhausted its retries."""

    def __init__(self, tool_name: str, attempts: int, cause: Exception | None):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"{tool_name} failed after {attempts} attempts: {cause}")


class PromptValidationError(DevarkError):
    """Prompt text failed validation."""


class HookInstallError(DevarkError):
    """A hook settings file could not be read or written."""


class SyncCancelled(DevarkError):
    """Raised at a cancellation point inside the sync pipeline."""


class ApiError(DevarkError):
    """The sync backend answered with an error status or could not be reached."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


def friendly_error_message(error: BaseException | str) -> str:
    """Map an error to a short message suitable for a notification."""
    message = str(error)
    lowered = message.lower()

    if "not configured" in lowered or "no provider" in lowered or "no llm" in lowered:
        return "LLM provider not configured"
    if any(s in lowered for s in ("econnrefused", "network", "timeout", "timed out", "connection")):
        return "Network error — check your connection"
    if any(s in lowered for s in ("401", "unauthorized", "api key", "authentication")):
        return "Authentication failed — check your API key"
    if any(s in lowered for s in ("quota", "429", "rate limit")):
        return "API quota exceeded"
    return message or "Unknown error"
