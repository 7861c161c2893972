"""Anthropic Messages API provider."""

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

_ANTHROPIC_MAX_TOKENS = 8192

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def _normalize_stop_reason(stop_reason: Any) -> FinishReason | None:
    """Map Anthropic stop_reason to a canonical finish reason."""
    if stop_reason is None:
        return None
    return _STOP_REASONS.get(str(stop_reason).lower(), "stop")


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. Tool results are
    sent as ``user`` content, so a tool message followed by a user prompt
    collapses into one message here.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _is_error_result(result: dict[str, Any]) -> bool:
    return set(result) == {"error"}


def _content_blocks(message: Message) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            if part.text:
                blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, FunctionCall):
            blocks.append(
                {
                    "type": "tool_use",
                    "id": part.id,
                    "name": part.name,
                    "input": part.args,
                }
            )
        elif isinstance(part, FunctionResponse):
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": part.id,
                "content": dump_tool_result(part.result),
            }
            if _is_error_result(part.result):
                block["is_error"] = True
            blocks.append(block)
    return blocks


def _build_messages(request: ChatRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for message in request.messages:
        blocks = _content_blocks(message)
        if not blocks:
            continue
        role = "assistant" if message.role == "model" else "user"
        _append_message(messages, {"role": role, "content": blocks})
    return messages


class _MessagesStreamDecoder:
    """Decode raw Messages API stream events.

    ``tool_use`` input arrives as JSON fragments and is released when its
    content block stops. ``message_stop`` is the terminal event.
    """

    def __init__(self) -> None:
        self._tools: dict[int, dict[str, str]] = {}
        self._input_tokens = 0
        self._output_tokens = 0
        self._stop: FinishReason | None = None

    def _usage(self) -> Usage:
        return Usage(
            prompt_tokens=self._input_tokens,
            completion_tokens=self._output_tokens,
            total_tokens=self._input_tokens + self._output_tokens,
        )

    def decode(self, raw: Any) -> Decoded:
        kind = getattr(raw, "type", None)
        if kind == "message_start":
            usage = getattr(getattr(raw, "message", None), "usage", None)
            self._input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
            return Decoded()
        if kind == "content_block_start":
            block = getattr(raw, "content_block", None)
            if getattr(block, "type", None) == "tool_use":
                self._tools[raw.index] = {
                    "id": getattr(block, "id", "") or new_call_id("toolu"),
                    "name": getattr(block, "name", ""),
                    "json": "",
                }
            return Decoded()
        if kind == "content_block_delta":
            delta = getattr(raw, "delta", None)
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta":
                return Decoded(delta=getattr(delta, "text", "") or "")
            if delta_type == "input_json_delta" and raw.index in self._tools:
                self._tools[raw.index]["json"] += getattr(delta, "partial_json", "")
            return Decoded()
        if kind == "content_block_stop":
            slot = self._tools.pop(getattr(raw, "index", -1), None)
            if slot is None:
                return Decoded()
            call = FunctionCall(
                name=slot["name"],
                args=parse_tool_arguments(slot["json"]),
                id=slot["id"],
            )
            return Decoded(function_calls=(call,))
        if kind == "message_delta":
            self._stop = _normalize_stop_reason(
                getattr(getattr(raw, "delta", None), "stop_reason", None)
            )
            usage = getattr(raw, "usage", None)
            self._output_tokens = int(getattr(usage, "output_tokens", 0) or 0)
            return Decoded(usage=self._usage())
        if kind == "message_stop":
            return Decoded(done=True, usage=self._usage(), finish_reason=self._stop)
        return Decoded()

    def finish(self) -> Decoded:
        return Decoded(done=True, usage=self._usage(), finish_reason=self._stop)


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider."""

    provider_id = ProviderId.ANTHROPIC

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            native_token_counting=True,
            interleaved_text=True,
        )

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise self._missing_package("anthropic") from e
            config = self.config
            self._client = AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_s,
                max_retries=0,
            )
        return self._client

    def _build_kwargs(self, request: ChatRequest) -> dict[str, Any]:
        gen = request.generation
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": _build_messages(request),
            "max_tokens": gen.max_output_tokens or _ANTHROPIC_MAX_TOKENS,
        }
        if request.system_instruction:
            kwargs["system"] = request.system_instruction
        if gen.temperature is not None:
            kwargs["temperature"] = gen.temperature
        if gen.top_p is not None:
            kwargs["top_p"] = gen.top_p
        if gen.top_k is not None:
            kwargs["top_k"] = gen.top_k
        if gen.stop_sequences:
            kwargs["stop_sequences"] = list(gen.stop_sequences)
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in request.tools
            ]
        return kwargs

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Generate a response using Anthropic's Messages API."""
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        response = await self._call("chat", lambda: client.messages.create(**kwargs))
        return _parse_response(response)

    def stream_chat(self, request: ChatRequest) -> ChunkStream:
        """Stream a response as raw Messages API events."""
        return ChunkStream(self._stream(request))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        try:
            raw = await client.messages.create(**kwargs, stream=True)
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

        async for chunk in normalize_stream(
            raw, _MessagesStreamDecoder(), provider=self.name
        ):
            yield chunk

    async def count_tokens(self, request: ChatRequest) -> int:
        """Count input tokens with ``messages.count_tokens``."""
        client = self._get_client()
        kwargs = self._build_kwargs(request)
        kwargs.pop("max_tokens", None)
        for key in ("temperature", "top_p", "top_k", "stop_sequences"):
            kwargs.pop(key, None)
        response = await self._call(
            "count_tokens", lambda: client.messages.count_tokens(**kwargs)
        )
        return int(getattr(response, "input_tokens", 0) or 0)


def _parse_response(response: Any) -> ChatResponse:
    """Parse an Anthropic Message response into a ChatResponse."""
    text_parts: list[str] = []
    calls: list[FunctionCall] = []
    for block in getattr(response, "content", []) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "tool_use":
            calls.append(
                FunctionCall(
                    name=getattr(block, "name", ""),
                    args=parse_tool_arguments(getattr(block, "input", {})),
                    id=getattr(block, "id", "") or new_call_id("toolu"),
                )
            )

    usage: Usage | None = None
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        input_tokens = int(getattr(usage_raw, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
        usage = Usage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

    finish = _normalize_stop_reason(getattr(response, "stop_reason", None)) or "stop"
    if calls and finish == "stop":
        finish = "tool_calls"

    metadata: dict[str, Any] = {}
    response_id = getattr(response, "id", None)
    if isinstance(response_id, str):
        metadata["response_id"] = response_id

    return ChatResponse(
        message=model_message("".join(text_parts), calls),
        finish_reason=finish,
        usage=usage,
        metadata=metadata,
    )
