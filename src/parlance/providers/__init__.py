"""Provider adapters, classification and registry.

Concrete adapters live in their own modules and are reached through
``parlance.providers.registry``.
"""

from .base import BaseProvider, Provider, ProviderCapabilities
from .classifier import (
    ProviderId,
    approximate_context_limit,
    classify,
    supports_native_token_counting,
)

__all__ = [
    "BaseProvider",
    "Provider",
    "ProviderCapabilities",
    "ProviderId",
    "approximate_context_limit",
    "classify",
    "supports_native_token_counting",
]
