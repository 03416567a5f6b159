"""Shared plumbing for provider-backed copilot tools.

A tool supplies ``tool_name``, ``build_prompt`` and ``parse_response``;
``execute`` handles validation, retries with backoff, and progress.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

from ..errors import ToolExecutionError, ToolParseError
from ..llm.base import CompletionRequest

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAYS = (1.0, 2.0, 3.0)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_PREAMBLE_RE = re.compile(r"^(Here'?s?|The|This is|My|I'll provide|Response:?).*?:", re.IGNORECASE)

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")

ProgressCallback = Callable[[int, str], None]


@dataclass
class InteractionContext:
    prompt: str
    response: Optional[str] = None
    files_modified: list[str] = field(default_factory=list)


@dataclass
class CodeSnippet:
    entity_name: str
    file_path: str
    relevant_code: str


@dataclass
class PromptContext:
    """Background handed to the scorer and enhancer to make their prompts targeted."""

    goal: Optional[str] = None
    tech_stack: list[str] = field(default_factory=list)
    recent_topics: list[str] = field(default_factory=list)
    code_snippets: list[CodeSnippet] = field(default_factory=list)
    session_duration: Optional[int] = None  # minutes
    first_interactions: list[InteractionContext] = field(default_factory=list)
    last_interactions: list[InteractionContext] = field(default_factory=list)
    project_summary: Optional[str] = None


def extract_balanced(content: str, open_char: str = "{", close_char: str = "}") -> str | None:
    """Return the first balanced ``{...}`` (or ``[...]``) span, honouring string escapes."""
    start = content.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(content)):
        char = content[i]
        if escape:
            escape = False
            continue
        if char == "\\" and in_string:
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if not in_string:
            if char == open_char:
                depth += 1
            elif char == close_char:
                depth -= 1
                if depth == 0:
                    return content[start: i + 1]
    return None


def _try_json(text: str | None) -> tuple[bool, Any]:
    if text is None:
        return False, None
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def extract_json(content: str, tool_name: str = "CopilotTool") -> Any:
    """Recover a JSON value from model text.

    Tries, in order: the whole trimmed text, the first fenced code block, the
    first balanced object, and the first balanced object after stripping a
    conversational preamble. Raises ToolParseError when all four fail.
    """
    ok, value = _try_json(content.strip())
    if ok:
        return value

    match = _CODE_BLOCK_RE.search(content)
    if match:
        ok, value = _try_json(match.group(1).strip())
        if ok:
            return value

    ok, value = _try_json(extract_balanced(content))
    if ok:
        return value

    cleaned = _PREAMBLE_RE.sub("", content, count=1).strip()
    if cleaned != content:
        ok, value = _try_json(extract_balanced(cleaned))
        if ok:
            return value

    logger.error("[%s] Failed to parse JSON from response: %s", tool_name, content[:500])
    raise ToolParseError(tool_name)


class BaseCopilotTool(ABC, Generic[TInput, TOutput]):
    """Template for a provider call: validate, build prompt, call with retry, parse."""

    tool_name = "CopilotTool"
    temperature = 0.7
    max_tokens = 2000

    def __init__(self, provider, sleep: Callable[[float], Any] = asyncio.sleep):
        self.provider = provider
        self._sleep = sleep

    async def execute(
        self,
        data: TInput,
        on_progress: ProgressCallback | None = None,
        context: PromptContext | None = None,
    ) -> TOutput:
        self._report(on_progress, 0, "Starting...")
        self.validate_input(data)

        self._report(on_progress, 20, "Building prompt...")
        prompt = self.build_prompt(data, context)

        self._report(on_progress, 40, "Calling LLM...")
        raw = await self.call_llm(prompt, on_progress)

        self._report(on_progress, 80, "Processing response...")
        result = self.parse_response(raw)

        self._report(on_progress, 100, "Complete")
        return result

    def validate_input(self, data: TInput) -> None:
        if data is None or data == "":
            raise ValueError(f"{self.tool_name}: Input cannot be empty")

    @abstractmethod
    def build_prompt(self, data: TInput, context: PromptContext | None = None) -> str:
        ...

    @abstractmethod
    def parse_response(self, content: str) -> TOutput:
        ...

    async def call_llm(self, prompt: str, on_progress: ProgressCallback | None = None) -> str:
        """Call the provider up to MAX_ATTEMPTS times, backing off between attempts."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await self.provider.generate_completion(CompletionRequest(
                    prompt=prompt,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ))
                if response.error:
                    raise RuntimeError(response.error)
                return response.text
            except Exception as e:
                last_error = e
                if attempt < MAX_ATTEMPTS:
                    message = f"Retrying ({attempt}/{MAX_ATTEMPTS})..."
                    self._report(on_progress, 40 + attempt * 10, message)
                    await self._sleep(RETRY_DELAYS[attempt - 1])

        raise ToolExecutionError(self.tool_name, MAX_ATTEMPTS, last_error)

    def parse_json(self, content: str) -> Any:
        return extract_json(content, self.tool_name)

    def _report(self, callback: ProgressCallback | None, progress: int, message: str) -> None:
        if callback is not None:
            callback(progress, message)
        logger.debug("[%s] %d%% - %s", self.tool_name, progress, message)
