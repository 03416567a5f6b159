"""Abstract base class for language-model providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional


@dataclass
class CompletionRequest:
    prompt: str
    system_prompt: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2000


@dataclass
class CompletionResponse:
    text: str
    error: Optional[str] = None
    model: Optional[str] = None
    usage: dict = field(default_factory=dict)


class LLMProvider(ABC):
    """Base class for completion backends.

    Providers report API failures through ``CompletionResponse.error`` rather
    than raising; callers retry on either.
    """

    name: str  # "anthropic", ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if credentials for this provider are present."""
        ...

    @abstractmethod
    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        """Return the full completion for a request."""
        ...

    async def stream_completion(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield completion text in chunks. Defaults to a single chunk."""
        response = await self.generate_completion(request)
        if response.error:
            raise RuntimeError(response.error)
        yield response.text
