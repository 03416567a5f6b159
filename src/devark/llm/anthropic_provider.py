"""Anthropic Messages API provider."""

import logging
from typing import AsyncIterator

import anthropic

from ..config import get_anthropic_api_key, get_llm_model
from .base import CompletionRequest, CompletionResponse, LLMProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(self, api_key: str | None = None, model: str | None = None, client=None):
        self.api_key = api_key or get_anthropic_api_key()
        self.model = model or get_llm_model()
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        try:
            response = await self.client.messages.create(**self._params(request))
        except anthropic.APIError as e:
            logger.warning("Anthropic request failed: %s", e)
            return CompletionResponse(text="", error=str(e), model=self.model)

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        usage = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        return CompletionResponse(text=text, model=getattr(response, "model", self.model), usage=usage)

    async def stream_completion(self, request: CompletionRequest) -> AsyncIterator[str]:
        async with self.client.messages.stream(**self._params(request)) as stream:
            async for text in stream.text_stream:
                yield text

    def _params(self, request: CompletionRequest) -> dict:
        params = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            params["system"] = request.system_prompt
        return params
