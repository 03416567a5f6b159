"""Links responses to the prompt that triggered them and aggregates conversations."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .core import CURSOR, CapturedPrompt, ConversationState, Response
from .events import FINAL_RESPONSE_DETECTED, RESPONSE_DETECTED, EventDispatcher

logger = logging.getLogger(__name__)

PROMPT_TTL_SECONDS = 5 * 60
CONVERSATION_TTL_SECONDS = 30 * 60


def link_key(source: str, conversation_id: str | None, session_id: str | None) -> str | None:
    """Return the key that ties a response to its prompt.

    Cursor links on the conversation id (its generation id changes per
    response); Claude Code links on the session id.
    """
    if source == CURSOR and conversation_id:
        return f"cursor:{conversation_id}"
    if session_id:
        return f"claude:{session_id}"
    if conversation_id:
        return f"cursor:{conversation_id}"
    return None


@dataclass
class _Conversation:
    seen_at: float
    start_time: Optional[datetime] = None
    prompts: list[CapturedPrompt] = field(default_factory=list)
    responses: list[Response] = field(default_factory=list)


@dataclass
class LinkResult:
    response: Response
    linked_prompt: Optional[CapturedPrompt] = None
    conversation_state: Optional[ConversationState] = None


class ConversationLinker:
    """Holds two TTL maps: last prompt per key, and a rolling conversation aggregate.

    TTLs are measured from when the linker observed an entry; expired entries
    are swept lazily on every access.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher | None = None,
        clock: Callable[[], float] = time.monotonic,
        prompt_ttl: float = PROMPT_TTL_SECONDS,
        conversation_ttl: float = CONVERSATION_TTL_SECONDS,
    ):
        self.dispatcher = dispatcher
        self._clock = clock
        self._prompt_ttl = prompt_ttl
        self._conversation_ttl = conversation_ttl
        self._last_prompts: dict[str, tuple[CapturedPrompt, float]] = {}
        self._conversations: dict[str, _Conversation] = {}

    def on_prompt(self, prompt: CapturedPrompt) -> None:
        self._sweep()
        key = link_key(prompt.source, prompt.conversation_id, prompt.session_id)
        if key is None:
            return
        now = self._clock()
        self._last_prompts[key] = (prompt, now)
        conversation = self._conversations.setdefault(key, _Conversation(seen_at=now))
        if conversation.start_time is None:
            conversation.start_time = prompt.timestamp
        conversation.prompts.append(prompt)

    def on_response(self, response: Response) -> LinkResult:
        self._sweep()
        result = LinkResult(response=response)
        key = link_key(response.source, response.conversation_id, response.session_id)

        if key is not None:
            entry = self._last_prompts.get(key)
            if entry is not None:
                prompt = entry[0]
                response.prompt_id = prompt.id
                response.prompt_text = prompt.prompt
                response.prompt_timestamp = prompt.timestamp
                result.linked_prompt = prompt

            if response.is_final:
                result.conversation_state = self._close(key, response)
            else:
                conversation = self._conversations.setdefault(key, _Conversation(seen_at=self._clock()))
                conversation.responses.append(response)
        elif response.is_final:
            result.conversation_state = _build_state(response.conversation_id or response.id, None, response)

        if self.dispatcher is not None:
            self.dispatcher.emit(RESPONSE_DETECTED, {
                "response": response,
                "linkedPrompt": result.linked_prompt,
            })
            if result.conversation_state is not None:
                self.dispatcher.emit(FINAL_RESPONSE_DETECTED, {
                    "response": response,
                    "linkedPrompt": result.linked_prompt,
                    "conversationState": result.conversation_state,
                })
        return result

    def has_conversation(self, key: str) -> bool:
        self._sweep()
        return key in self._conversations

    def last_prompt(self, key: str) -> CapturedPrompt | None:
        self._sweep()
        entry = self._last_prompts.get(key)
        return entry[0] if entry else None

    def clear(self) -> None:
        self._last_prompts.clear()
        self._conversations.clear()

    # ── Private helpers ──────────────────────────────────────────────

    def _close(self, key: str, response: Response) -> ConversationState:
        conversation = self._conversations.pop(key, None)
        conversation_id = response.conversation_id or response.session_id or key
        state = _build_state(conversation_id, conversation, response)
        logger.debug(
            "Conversation %s closed: %d prompts, %d responses",
            key, state.total_prompts, state.total_responses,
        )
        return state

    def _sweep(self) -> None:
        now = self._clock()
        for key in [k for k, (_, seen) in self._last_prompts.items() if now - seen > self._prompt_ttl]:
            del self._last_prompts[key]
        for key in [k for k, c in self._conversations.items() if now - c.seen_at > self._conversation_ttl]:
            del self._conversations[key]


def _build_state(
    conversation_id: str, conversation: _Conversation | None, final: Response
) -> ConversationState:
    responses = list(conversation.responses) if conversation else []
    files: list[str] = []
    tools: list[str] = []
    for r in responses + [final]:
        for f in r.files_modified:
            if f not in files:
                files.append(f)
        for name in r.tool_names:
            if name not in tools:
                tools.append(name)

    start_time = conversation.start_time if conversation else None
    duration_ms = None
    if start_time is not None:
        duration_ms = int((final.timestamp - start_time).total_seconds() * 1000)

    return ConversationState(
        conversation_id=conversation_id,
        start_time=start_time,
        end_time=final.timestamp,
        duration_ms=duration_ms,
        total_prompts=len(conversation.prompts) if conversation else 0,
        total_responses=len(responses),
        stop_reason=final.stop_reason or "completed",
        loop_count=final.loop_count or 0,
        files_modified=files,
        tools_used=tools,
    )
