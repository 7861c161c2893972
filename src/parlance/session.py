"""Session and turn state: adapters, cancellation and the active model."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING

from parlance.config import api_key_env_var
from parlance.errors import AbortError, ConfigurationError
from parlance.providers.classifier import ProviderId, classify
from parlance.providers.mock import MockProvider
from parlance.providers.registry import default_registry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from parlance.config import Config
    from parlance.messages import Message, ToolCallRequest
    from parlance.providers.base import Provider
    from parlance.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class CancellationToken:
    """Single shared cancellation signal for a session.

    Observed cooperatively by the orchestrator and passed to tools.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation; later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    async def wait(self) -> None:
        """Block until cancellation is signalled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise AbortError when cancellation has been signalled."""
        if self._event.is_set():
            raise AbortError(self._reason)


@dataclass
class Turn:
    """One loop iteration: send to model, maybe execute tools."""

    index: int
    messages: list[Message] = field(default_factory=list)
    pending: list[ToolCallRequest] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at


class Session:
    """State for one conversation session.

    Owns the turn sequence, the cancellation token, the turn ceiling and the
    active model, plus one adapter per provider used. Configuration is checked
    eagerly so a missing key fails before any network call.
    """

    def __init__(
        self,
        config: Config,
        *,
        registry: ProviderRegistry | None = None,
        token: CancellationToken | None = None,
        history: Iterable[Message] = (),
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else default_registry()
        self.token = token if token is not None else CancellationToken()
        self.max_turns = config.max_session_turns
        self.active_model = config.model
        self.fallback_model = config.fallback_model
        self.history: list[Message] = list(history)
        self.turns: list[Turn] = []
        self._adapters: dict[ProviderId, Provider] = {}
        self._mock: Provider | None = None
        self._validate()

    def _require_provider(self, model: str) -> ProviderId:
        provider = classify(model)
        if provider not in self.registry:
            raise ConfigurationError(
                f"No adapter registered for {provider.value} (model {model!r})",
                hint=f"Registered providers: {', '.join(self.registry.supported())}",
            )
        if not self.config.provider_config(provider).api_key:
            raise ConfigurationError(
                f"API key required for {provider.value} (model {model!r})",
                hint=f"Set {api_key_env_var(provider)} or run with --mock.",
            )
        return provider

    def _validate(self) -> None:
        if self.config.use_mock:
            return
        self._require_provider(self.active_model)
        if self.fallback_model and self.fallback_model != self.active_model:
            try:
                self._require_provider(self.fallback_model)
            except ConfigurationError as e:
                logger.info("Fallback model disabled: %s", e)
                self.fallback_model = None

    @property
    def provider_id(self) -> ProviderId:
        """Provider serving the active model."""
        return classify(self.active_model)

    def adapter(self) -> Provider:
        """Adapter for the active model, created and initialized on first use."""
        if self.config.use_mock:
            if self._mock is None:
                self._mock = MockProvider()
            return self._mock

        provider = self.provider_id
        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = self.registry.create(provider)
            adapter.initialize(self.config.provider_config(provider))
            self._adapters[provider] = adapter
            logger.debug("Created %s adapter for %s", provider.value, self.active_model)
        return adapter

    def switch_model(self, model: str) -> None:
        """Make *model* the active model for the rest of the session."""
        logger.warning("Switching active model %s -> %s", self.active_model, model)
        self.active_model = model

    def start_turn(self) -> Turn:
        """Open the next turn over the current history."""
        turn = Turn(index=len(self.turns), messages=list(self.history))
        self.turns.append(turn)
        return turn

    async def aclose(self) -> None:
        """Close every adapter this session created."""
        adapters = list(self._adapters.values())
        if self._mock is not None:
            adapters.append(self._mock)
        self._adapters.clear()
        self._mock = None
        for adapter in adapters:
            try:
                await adapter.aclose()
            except Exception:
                logger.warning("Failed to close adapter %r", adapter, exc_info=True)

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
