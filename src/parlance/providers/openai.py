"""OpenAI Chat Completions provider.

Also the base for every OpenAI-compatible family (see ``openai_compat``):
they share this wire format and differ only in endpoint and a few knobs.
"""

from __future__ import annotations

import json
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
from parlance.providers._utils import (
    dump_tool_result,
    new_call_id,
    parse_tool_arguments,
)
from parlance.providers.base import BaseProvider, ProviderCapabilities
from parlance.providers.classifier import ProviderId
from parlance.streaming import ChunkStream, Decoded, normalize_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from parlance.messages import ChatRequest, Message, StreamChunk

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
    "content_filter": "stop",
}


def _finish_reason(raw: Any) -> FinishReason | None:
    if raw is None:
        return None
    return _FINISH_REASONS.get(str(raw).lower(), "stop")


def _usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    prompt = int(getattr(raw, "prompt_tokens", 0) or 0)
    completion = int(getattr(raw, "completion_tokens", 0) or 0)
    total = int(getattr(raw, "total_tokens", 0) or 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _to_wire_message(message: Message) -> list[dict[str, Any]]:
    if message.role == "tool":
        return [
            {
                "role": "tool",
                "tool_call_id": part.id,
                "content": dump_tool_result(part.result),
            }
            for part in message.parts
            if isinstance(part, FunctionResponse)
        ]

    text = "".join(p.text for p in message.parts if isinstance(p, TextPart))
    if message.role == "user":
        return [{"role": "user", "content": text}]

    calls = [p for p in message.parts if isinstance(p, FunctionCall)]
    wire: dict[str, Any] = {"role": "assistant", "content": text or None}
    if calls:
        wire["tool_calls"] = [
            {
                "id": c.id,
                "type": "function",
                "function": {"name": c.name, "arguments": json.dumps(c.args)},
            }
            for c in calls
        ]
    return [wire]


class _ChatCompletionsDecoder:
    """Decode Chat Completions stream chunks.

    Tool calls arrive as fragments keyed by ``index``; they are assembled and
    released once the stream is exhausted, which is this API's terminal
    condition.
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}
        self._finish: FinishReason | None = None

    def decode(self, raw: Any) -> Decoded:
        usage = _usage(getattr(raw, "usage", None))
        choices = getattr(raw, "choices", None) or []
        if not choices:
            return Decoded(usage=usage)

        choice = choices[0]
        delta = getattr(choice, "delta", None)
        text = getattr(delta, "content", None) or ""
        for fragment in getattr(delta, "tool_calls", None) or []:
            index = getattr(fragment, "index", 0) or 0
            slot = self._calls.setdefault(
                index, {"id": "", "name": "", "arguments": ""}
            )
            if getattr(fragment, "id", None):
                slot["id"] = fragment.id
            function = getattr(fragment, "function", None)
            if function is not None:
                if getattr(function, "name", None):
                    slot["name"] += function.name
                if getattr(function, "arguments", None):
                    slot["arguments"] += function.arguments

        reason = _finish_reason(getattr(choice, "finish_reason", None))
        if reason is not None:
            self._finish = reason
        return Decoded(delta=text, usage=usage)

    def finish(self) -> Decoded:
        calls = tuple(
            FunctionCall(
                name=slot["name"],
                args=parse_tool_arguments(slot["arguments"]),
                id=slot["id"] or new_call_id(),
            )
            for _, slot in sorted(self._calls.items())
        )
        reason = self._finish or ("tool_calls" if calls else "stop")
        return Decoded(done=True, finish_reason=reason, function_calls=calls)


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions provider."""

    provider_id = ProviderId.OPENAI
    default_base_url: str | None = None
    max_tokens_param = "max_completion_tokens"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            native_token_counting=False,
            interleaved_text=True,
        )

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise self._missing_package("openai") from e
            config = self.config
            self._client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url or self.default_base_url,
                timeout=config.timeout_s,
                # Retries are owned by parlance.retry.
                max_retries=0,
            )
        return self._client

    def _sampling_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        gen = request.generation
        kwargs: dict[str, Any] = {}
        if gen.temperature is not None:
            kwargs["temperature"] = gen.temperature
        if gen.top_p is not None:
            kwargs["top_p"] = gen.top_p
        return kwargs

    def _build_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        for message in request.messages:
            messages.extend(_to_wire_message(message))

        kwargs: dict[str, Any] = {"model": request.model, "messages": messages}
        kwargs.update(self._sampling_kwargs(request))

        gen = request.generation
        if gen.max_output_tokens is not None:
            kwargs[self.max_tokens_param] = gen.max_output_tokens
        if gen.stop_sequences:
            kwargs["stop"] = list(gen.stop_sequences)

        if request.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in request.tools
            ]
        return kwargs

    def _parse_response(self, response: Any) -> ChatResponse:
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        text = getattr(message, "content", None) or ""

        calls = tuple(
            FunctionCall(
                name=tc.function.name,
                args=parse_tool_arguments(tc.function.arguments),
                id=getattr(tc, "id", None) or new_call_id(),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        )

        finish = (
            _finish_reason(getattr(choices[0], "finish_reason", None))
            if choices
            else None
        )
        if calls and finish in (None, "stop"):
            finish = "tool_calls"

        metadata: dict[str, Any] = {}
        response_id = getattr(response, "id", None)
        if isinstance(response_id, str):
            metadata["response_id"] = response_id
        reasoning = getattr(message, "reasoning_content", None)
        if isinstance(reasoning, str) and reasoning:
            metadata["reasoning"] = reasoning

        return ChatResponse(
            message=model_message(text, calls),
            finish_reason=finish or "stop",
            usage=_usage(getattr(response, "usage", None)),
            metadata=metadata,
        )

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Generate a complete reply via ``chat.completions.create``."""
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        response = await self._call(
            "chat", lambda: client.chat.completions.create(**kwargs)
        )
        return self._parse_response(response)

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        """Stream a reply; usage arrives on the final, choice-less chunk."""
        return ChunkStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        try:
            raw = await client.chat.completions.create(
                **kwargs, stream=True, stream_options={"include_usage": True}
            )
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

        async for chunk in normalize_stream(
            raw, _ChatCompletionsDecoder(), provider=self.name
        ):
            yield chunk
