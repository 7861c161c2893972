"""Provider protocol: the uniform surface every backend adapter exposes."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, TypeVar, runtime_checkable

from parlance.errors import APIError, ConfigurationError, UnsupportedOperationError
from parlance.providers._errors import wrap_provider_error
from parlance.retry import RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from parlance.config import ProviderConfig
    from parlance.messages import ChatRequest, ChatResponse
    from parlance.providers.classifier import ProviderId
    from parlance.streaming import ChunkStream

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    streaming: bool = True
    tools: bool = True
    native_token_counting: bool = False
    #: Whether a model turn may carry text alongside function calls.
    interleaved_text: bool = False


@runtime_checkable
class Provider(Protocol):
    """Minimal adapter protocol: chat, stream_chat, count_tokens."""

    def initialize(self, config: ProviderConfig) -> None:
        """Bind connection settings; idempotent for an equal config."""
        ...

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Return the complete model reply for *request*."""
        ...

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        """Return a single-use stream of chunks for *request*."""
        ...

    async def count_tokens(self, request: ChatRequest) -> int:
        """Count prompt tokens natively or raise UnsupportedOperationError."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities of this adapter."""
        ...


class BaseProvider:
    """Shared plumbing for concrete adapters.

    Subclasses set ``provider_id`` and implement ``chat``/``stream_chat``;
    ``_call`` wraps SDK failures and applies the bounded retry.
    """

    provider_id: ClassVar[ProviderId]

    def __init__(self) -> None:
        self._config: ProviderConfig | None = None
        self._client: Any = None

    @property
    def name(self) -> str:
        """Provider identity as a plain string, used in errors and logs."""
        return self.provider_id.value

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities()

    @property
    def config(self) -> ProviderConfig:
        """The bound configuration; raises if ``initialize`` was never called."""
        if self._config is None:
            raise ConfigurationError(
                f"{self.name} adapter used before initialize()",
                hint="Call initialize(ProviderConfig(...)) first.",
            )
        return self._config

    def initialize(self, config: ProviderConfig) -> None:
        """Bind *config*. Re-binding an equal config is a no-op."""
        if self._config is None:
            self._config = config
            logger.debug("Initialized %s adapter: %s", self.name, config)
            return
        if self._config != config:
            raise ConfigurationError(
                f"{self.name} adapter is already initialized with a different config",
                hint="Create a new adapter instance per provider configuration.",
            )

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=max(0, self.config.max_retries))

    async def _call(self, phase: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run one SDK call with error wrapping and bounded transient retry."""

        async def attempt() -> T:
            try:
                return await factory()
            except APIError:
                raise
            except Exception as e:
                raise wrap_provider_error(e, provider=self.name, phase=phase) from e

        return await retry_async(attempt, policy=self._retry_policy())

    def _missing_package(self, package: str) -> APIError:
        return APIError(
            f"{package} package not installed",
            hint=f"pip install {package}",
            provider=self.name,
        )

    async def count_tokens(self, request: ChatRequest) -> int:
        """Raise: this adapter has no native token counting."""
        _ = request
        raise UnsupportedOperationError(
            f"{self.name} does not support native token counting",
            hint="Fall back to parlance.tokens.estimate_request_tokens().",
        )

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()
