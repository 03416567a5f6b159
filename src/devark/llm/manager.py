"""Provider registry that selects the active completion backend."""

import logging

from ..errors import ProviderNotConfiguredError
from .base import CompletionRequest, CompletionResponse, LLMProvider

logger = logging.getLogger(__name__)


class LLMManager:
    """Holds registered providers and delegates completions to the active one."""

    def __init__(self, providers: list[LLMProvider] | None = None, active: str | None = None):
        self._providers: dict[str, LLMProvider] = {}
        self._active = active
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.name] = provider

    def set_active(self, name: str) -> None:
        if name not in self._providers:
            raise ValueError(f"Unknown provider: {name}")
        self._active = name

    def list_providers(self) -> list[str]:
        return list(self._providers)

    def get_active_provider(self) -> LLMProvider | None:
        """Return the selected provider, or the first configured one."""
        if self._active:
            provider = self._providers.get(self._active)
            return provider if provider is not None and provider.is_configured() else None
        for provider in self._providers.values():
            if provider.is_configured():
                return provider
        return None

    def is_available(self) -> bool:
        return self.get_active_provider() is not None

    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        provider = self.get_active_provider()
        if provider is None:
            raise ProviderNotConfiguredError()
        logger.debug("Completion via %s (%d chars)", provider.name, len(request.prompt))
        return await provider.generate_completion(request)


def create_default_manager() -> LLMManager:
    """Build a manager with the providers this package ships."""
    from .anthropic_provider import AnthropicProvider

    return LLMManager([AnthropicProvider()])
