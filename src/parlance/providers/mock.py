"""Mock provider for offline runs and tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from parlance.config import ProviderConfig
from parlance.messages import ChatResponse, Message, StreamChunk, Usage
from parlance.providers.base import BaseProvider, ProviderCapabilities
from parlance.streaming import ChunkStream
from parlance.tokens import estimate_request_tokens, estimate_tokens

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parlance.messages import ChatRequest


class MockProvider(BaseProvider):
    """Deterministic echo provider: no network, no API key.

    Replies with ``echo: <last user text>`` so ``--mock`` runs show the
    round trip. Never requests tool calls.
    """

    @property
    def name(self) -> str:
        return "mock"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tools=False,
            native_token_counting=False,
            interleaved_text=False,
        )

    @property
    def config(self) -> ProviderConfig:
        return self._config or ProviderConfig()

    def _reply(self, request: ChatRequest) -> str:
        for message in reversed(request.messages):
            if message.role == "user" and message.text.strip():
                return f"echo: {message.text[:100]}"
        return "echo: "

    def _usage(self, request: ChatRequest, text: str) -> Usage:
        prompt = estimate_request_tokens(request)
        completion = estimate_tokens(text)
        return Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Return a deterministic echo of the latest user message."""
        text = self._reply(request)
        return ChatResponse(
            message=Message.model_text(text),
            finish_reason="stop",
            usage=self._usage(request, text),
            metadata={"provider": "mock"},
        )

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        """Stream the echo word by word, ending with an explicit done chunk."""
        return ChunkStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        text = self._reply(request)
        content = ""
        words = text.split(" ")
        for i, word in enumerate(words):
            delta = word if i == len(words) - 1 else f"{word} "
            if not delta:
                continue
            content += delta
            yield StreamChunk(delta=delta, content=content)
        yield StreamChunk(
            content=content,
            done=True,
            usage=self._usage(request, text),
            finish_reason="stop",
        )

    async def aclose(self) -> None:
        """Nothing to release."""
