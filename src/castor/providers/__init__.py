"""Provider adapters and the registry that maps service names to them."""

from __future__ import annotations

from castor.errors import UnsupportedServiceError

from .anthropic import AnthropicAdapter
from .base import HTTPAdapter, ProviderAdapter
from .deepseek import DeepSeekAdapter
from .google import GoogleAdapter
from .groq import GroqAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter, OpenAICompatibleAdapter
from .xai import XAIAdapter


class _AdapterRegistry:
    """Internal mapping from service names to adapters.

    The one place where a service name turns into vendor-specific code.
    Lookups for unknown names fail loudly.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, ProviderAdapter] = {}

    def register(self, adapter: ProviderAdapter) -> None:
        """Register *adapter* under its ``name``, replacing any previous one."""
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> ProviderAdapter:
        """Return the adapter for *name*.

        Raises:
            UnsupportedServiceError: No adapter is registered under *name*.
        """
        adapter = self._adapters.get(name)
        if adapter is None:
            raise UnsupportedServiceError(
                name, hint=f"Supported services: {', '.join(self.list_providers())}"
            )
        return adapter

    def list_providers(self) -> list[str]:
        """Sorted names of all registered services."""
        return sorted(self._adapters)


registry = _AdapterRegistry()
for _adapter in (
    OpenAIAdapter(),
    AnthropicAdapter(),
    GoogleAdapter(),
    OllamaAdapter(),
    GroqAdapter(),
    DeepSeekAdapter(),
    XAIAdapter(),
):
    registry.register(_adapter)
del _adapter


def get_adapter(service: str) -> ProviderAdapter:
    """Adapter for *service*; raises UnsupportedServiceError when unknown."""
    return registry.get(service)


__all__ = [
    "AnthropicAdapter",
    "DeepSeekAdapter",
    "GoogleAdapter",
    "GroqAdapter",
    "HTTPAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "XAIAdapter",
    "get_adapter",
    "registry",
]
