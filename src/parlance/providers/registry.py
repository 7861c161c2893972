"""Provider registry: closed ProviderId → adapter factory mapping."""

from __future__ import annotations

from typing import TYPE_CHECKING

from parlance.errors import ConfigurationError
from parlance.providers.anthropic import AnthropicProvider
from parlance.providers.classifier import ProviderId
from parlance.providers.gemini import GeminiProvider
from parlance.providers.openai import OpenAIProvider
from parlance.providers.openai_compat import (
    BaiduProvider,
    DeepSeekProvider,
    GroqProvider,
    MistralProvider,
    MoonshotProvider,
    QwenProvider,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from parlance.providers.base import Provider


class ProviderRegistry:
    """Create adapters by provider identity.

    The orchestrator only talks to the ``Provider`` protocol; which class
    backs a given ProviderId is decided here.
    """

    def __init__(self) -> None:
        self._factories: dict[ProviderId, Callable[[], Provider]] = {}

    def register(self, provider: ProviderId, factory: Callable[[], Provider]) -> None:
        """Bind *factory* to *provider*, replacing any previous binding."""
        self._factories[provider] = factory

    def create(self, provider: ProviderId) -> Provider:
        """Return a fresh, uninitialized adapter for *provider*."""
        try:
            factory = self._factories[provider]
        except KeyError:
            raise ConfigurationError(
                f"No adapter registered for provider {provider.value!r}",
                hint=f"Registered providers: {', '.join(self.supported()) or 'none'}",
            ) from None
        return factory()

    def supported(self) -> list[str]:
        """Names of registered providers, sorted."""
        return sorted(p.value for p in self._factories)

    def __contains__(self, provider: object) -> bool:
        return provider in self._factories


def default_registry() -> ProviderRegistry:
    """Registry with every built-in adapter."""
    registry = ProviderRegistry()
    registry.register(ProviderId.GEMINI, GeminiProvider)
    registry.register(ProviderId.OPENAI, OpenAIProvider)
    registry.register(ProviderId.ANTHROPIC, AnthropicProvider)
    registry.register(ProviderId.DEEPSEEK, DeepSeekProvider)
    registry.register(ProviderId.QWEN, QwenProvider)
    registry.register(ProviderId.MOONSHOT, MoonshotProvider)
    registry.register(ProviderId.GROQ, GroqProvider)
    registry.register(ProviderId.MISTRAL, MistralProvider)
    registry.register(ProviderId.BAIDU, BaiduProvider)
    return registry
