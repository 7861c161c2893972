"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider subclasses as coverage expands.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from parlance.config import Config, ProviderConfig
from parlance.errors import UnsupportedOperationError
from parlance.messages import (
    ChatRequest,
    ChatResponse,
    FunctionCall,
    StreamChunk,
    Usage,
    model_message,
)
from parlance.providers.base import ProviderCapabilities
from parlance.providers.classifier import ProviderId
from parlance.providers.registry import ProviderRegistry
from parlance.session import Session
from parlance.streaming import ChunkStream

GEMINI_MODEL = "gemini-2.5-pro"
GEMINI_FALLBACK_MODEL = "gemini-2.5-flash"
OPENAI_MODEL = "gpt-4o-mini"


def text_reply(text: str, *, usage: Usage | None = None) -> ChatResponse:
    """A model reply with text only."""
    return ChatResponse(message=model_message(text), usage=usage)


def tool_reply(*calls: FunctionCall, text: str = "") -> ChatResponse:
    """A model reply requesting *calls*."""
    return ChatResponse(message=model_message(text, calls), finish_reason="tool_calls")


class ScriptedProvider:
    """Provider double that replays a scripted sequence of replies/exceptions.

    Each ``chat``/``stream_chat`` consumes one script entry. Requests are
    recorded for assertions.
    """

    def __init__(
        self,
        script: list[ChatResponse | BaseException] | None = None,
        *,
        streaming: bool = False,
        tools: bool = True,
        interleaved_text: bool = True,
    ) -> None:
        self.script = list(script or [])
        self.requests: list[ChatRequest] = []
        self.config: ProviderConfig | None = None
        self.closed = False
        self.streams_opened = 0
        self._capabilities = ProviderCapabilities(
            streaming=streaming, tools=tools, interleaved_text=interleaved_text
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    @property
    def calls(self) -> int:
        return len(self.requests)

    def initialize(self, config: ProviderConfig) -> None:
        self.config = config

    def _next(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if not self.script:
            raise AssertionError("ScriptedProvider script exhausted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return self._next(request)

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        return ChunkStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        self.streams_opened += 1
        response = self._next(request)
        content = ""
        words = response.text.split(" ") if response.text else []
        for i, word in enumerate(words):
            delta = word if i == len(words) - 1 else f"{word} "
            content += delta
            yield StreamChunk(delta=delta, content=content)
        yield StreamChunk(
            content=content,
            done=True,
            usage=response.usage,
            finish_reason=response.finish_reason,
            function_calls=response.function_calls,
        )

    async def count_tokens(self, request: ChatRequest) -> int:
        del request
        raise UnsupportedOperationError("scripted provider cannot count tokens")

    async def aclose(self) -> None:
        self.closed = True


def registry_for(**adapters: Any) -> ProviderRegistry:
    """Registry binding provider names (``gemini=...``) to fixed adapter instances."""
    registry = ProviderRegistry()
    for name, adapter in adapters.items():
        registry.register(ProviderId(name), lambda adapter=adapter: adapter)
    return registry


def keyed_config(**overrides: Any) -> Config:
    """Config with API keys for Gemini and OpenAI and streaming off by default."""
    fields: dict[str, Any] = {
        "model": GEMINI_MODEL,
        "fallback_model": GEMINI_FALLBACK_MODEL,
        "stream": False,
        "providers": {
            ProviderId.GEMINI: ProviderConfig(api_key="gemini-test-key"),
            ProviderId.OPENAI: ProviderConfig(api_key="openai-test-key"),
        },
    }
    fields.update(overrides)
    return Config(**fields)


def scripted_session(provider: ScriptedProvider, **overrides: Any) -> Session:
    """Session whose Gemini and OpenAI adapters are both *provider*."""
    return Session(
        keyed_config(**overrides),
        registry=registry_for(gemini=provider, openai=provider),
    )
