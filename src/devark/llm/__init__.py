"""Language-model providers and the manager that selects one."""

from .base import CompletionRequest, CompletionResponse, LLMProvider
from .manager import LLMManager, create_default_manager

__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "LLMProvider",
    "LLMManager",
    "create_default_manager",
]
