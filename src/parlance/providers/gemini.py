"""Gemini provider implementation (google-genai SDK)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from parlance.messages import (
    ChatResponse,
    FinishReason,
    FunctionCall,
    FunctionResponse,
    TextPart,
    Usage,
    model_message,
)
from parlance.providers._errors import wrap_provider_error
from parlance.providers._utils import new_call_id
from parlance.providers.base import BaseProvider, ProviderCapabilities
from parlance.providers.classifier import ProviderId
from parlance.streaming import ChunkStream, Decoded, normalize_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parlance.messages import ChatRequest, StreamChunk

_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
}


def _finish_reason(raw: Any) -> FinishReason | None:
    if raw is None:
        return None
    name = getattr(raw, "name", None) or str(raw)
    name = name.rsplit(".", 1)[-1].upper()
    if name in ("", "FINISH_REASON_UNSPECIFIED"):
        return None
    return _FINISH_REASONS.get(name, "stop")


def _usage(response: Any) -> Usage | None:
    um = getattr(response, "usage_metadata", None)
    if um is None:
        return None
    prompt = int(getattr(um, "prompt_token_count", 0) or 0)
    completion = int(getattr(um, "candidates_token_count", 0) or 0)
    total = int(getattr(um, "total_token_count", 0) or 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _candidate_parts(response: Any) -> tuple[str, tuple[FunctionCall, ...], Any]:
    """Return (text, function calls, finish reason) of the first candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return "", (), None
    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    texts: list[str] = []
    calls: list[FunctionCall] = []
    for part in getattr(content, "parts", None) or []:
        fc = getattr(part, "function_call", None)
        if fc is not None:
            calls.append(
                FunctionCall(
                    name=str(fc.name),
                    args=dict(fc.args or {}),
                    id=str(getattr(fc, "id", None) or new_call_id()),
                )
            )
            continue
        if getattr(part, "thought", False):
            continue
        text = getattr(part, "text", None)
        if text:
            texts.append(text)
    return "".join(texts), tuple(calls), getattr(candidate, "finish_reason", None)


class _GeminiDecoder:
    """Each stream item is a partial GenerateContentResponse.

    Function calls arrive whole. The stream ends when a candidate carries a
    finish reason.
    """

    def __init__(self) -> None:
        self._saw_calls = False

    def decode(self, raw: Any) -> Decoded:
        text, calls, raw_reason = _candidate_parts(raw)
        if calls:
            self._saw_calls = True
        reason = _finish_reason(raw_reason)
        if reason is not None:
            if self._saw_calls and reason == "stop":
                reason = "tool_calls"
            return Decoded(
                delta=text,
                done=True,
                usage=_usage(raw),
                finish_reason=reason,
                function_calls=calls,
            )
        return Decoded(delta=text, usage=_usage(raw), function_calls=calls)

    def finish(self) -> Decoded:
        return Decoded(
            done=True, finish_reason="tool_calls" if self._saw_calls else "stop"
        )


class GeminiProvider(BaseProvider):
    """Google Gemini API provider."""

    provider_id = ProviderId.GEMINI

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            native_token_counting=True,
            interleaved_text=True,
        )

    def _types(self) -> Any:
        """The ``google.genai.types`` module, or a canonical missing-package error."""
        try:
            from google.genai import types
        except ImportError as e:
            raise self._missing_package("google-genai") from e
        return types

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            types = self._types()
            from google import genai

            config = self.config
            http_options = types.HttpOptions(
                timeout=int(config.timeout_s * 1000),
                base_url=config.base_url,
            )
            self._client = genai.Client(
                api_key=config.api_key, http_options=http_options
            )
        return self._client

    def _contents(self, request: ChatRequest) -> list[Any]:
        """Convert canonical history into google-genai ``Content`` objects.

        Tool results travel as ``user`` content holding function responses,
        so the model always speaks right after them.
        """
        types = self._types()
        contents: list[Any] = []
        for message in request.messages:
            parts: list[Any] = []
            for part in message.parts:
                if isinstance(part, TextPart):
                    if part.text:
                        parts.append(types.Part.from_text(text=part.text))
                elif isinstance(part, FunctionCall):
                    parts.append(
                        types.Part.from_function_call(name=part.name, args=part.args)
                    )
                elif isinstance(part, FunctionResponse):
                    parts.append(
                        types.Part.from_function_response(
                            name=part.name, response=part.result
                        )
                    )
            if not parts:
                continue
            role = "model" if message.role == "model" else "user"
            contents.append(types.Content(role=role, parts=parts))
        return contents

    def _generate_config(self, request: ChatRequest) -> Any:
        types = self._types()
        gen = request.generation
        config_kwargs: dict[str, Any] = {}
        if request.system_instruction:
            config_kwargs["system_instruction"] = request.system_instruction
        if gen.temperature is not None:
            config_kwargs["temperature"] = gen.temperature
        if gen.top_p is not None:
            config_kwargs["top_p"] = gen.top_p
        if gen.top_k is not None:
            config_kwargs["top_k"] = gen.top_k
        if gen.max_output_tokens is not None:
            config_kwargs["max_output_tokens"] = gen.max_output_tokens
        if gen.stop_sequences:
            config_kwargs["stop_sequences"] = list(gen.stop_sequences)
        if request.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters=t.parameters,
                        )
                        for t in request.tools
                    ]
                )
            ]
            # Parlance executes tools itself.
            config_kwargs["automatic_function_calling"] = (
                types.AutomaticFunctionCallingConfig(disable=True)
            )
        return types.GenerateContentConfig(**config_kwargs)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Generate content from the Gemini model."""
        client = self._get_client()
        contents = self._contents(request)
        config = self._generate_config(request)
        response = await self._call(
            "chat",
            lambda: client.aio.models.generate_content(
                model=request.model, contents=contents, config=config
            ),
        )

        text, calls, raw_reason = _candidate_parts(response)
        finish = _finish_reason(raw_reason) or "stop"
        if calls and finish == "stop":
            finish = "tool_calls"

        metadata: dict[str, Any] = {}
        model_version = getattr(response, "model_version", None)
        if isinstance(model_version, str):
            metadata["model_version"] = model_version

        return ChatResponse(
            message=model_message(text, calls),
            finish_reason=finish,
            usage=_usage(response),
            metadata=metadata,
        )

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        """Stream content from the Gemini model."""
        return ChunkStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        contents = self._contents(request)
        config = self._generate_config(request)
        try:
            raw = await client.aio.models.generate_content_stream(
                model=request.model, contents=contents, config=config
            )
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

        async for chunk in normalize_stream(raw, _GeminiDecoder(), provider=self.name):
            yield chunk

    async def count_tokens(self, request: ChatRequest) -> int:
        """Count prompt tokens with the native ``count_tokens`` endpoint."""
        client = self._get_client()
        contents = self._contents(request)
        response = await self._call(
            "count_tokens",
            lambda: client.aio.models.count_tokens(
                model=request.model, contents=contents
            ),
        )
        return int(getattr(response, "total_tokens", 0) or 0)

    async def aclose(self) -> None:
        """Close the async transport when the SDK exposes it."""
        client = self._client
        if client is None:
            return
        self._client = None
        closer = getattr(getattr(client, "aio", None), "aclose", None)
        if closer is not None:
            await closer()
