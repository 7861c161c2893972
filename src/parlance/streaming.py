"""Streaming normalization: raw provider streams → canonical StreamChunks.

Each adapter supplies a small ``StreamDecoder`` that knows how to read one raw
item of its provider's stream. Everything else (accumulation, the single
terminal chunk, error wrapping, closing the transport) lives here so the
adapters cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import logging
from typing import TYPE_CHECKING, Any, Protocol

from parlance.messages import (
    ChatResponse,
    FinishReason,
    FunctionCall,
    StreamChunk,
    Usage,
    model_message,
)
from parlance.providers._errors import wrap_provider_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decoded:
    """What a decoder extracted from one raw stream item."""

    delta: str = ""
    done: bool = False
    usage: Usage | None = None
    finish_reason: FinishReason | None = None
    function_calls: tuple[FunctionCall, ...] = ()


class StreamDecoder(Protocol):
    """Provider-specific reader for one raw stream item at a time."""

    def decode(self, raw: Any) -> Decoded:
        """Extract the delta and terminal signal from *raw*."""
        ...

    def finish(self) -> Decoded:
        """Flush buffered state when the raw stream ends without a terminal item."""
        ...


async def _close_raw(raw: Any) -> None:
    for name in ("aclose", "close"):
        closer = getattr(raw, name, None)
        if callable(closer):
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


async def normalize_stream(
    raw: AsyncIterator[Any], decoder: StreamDecoder, *, provider: str
) -> AsyncIterator[StreamChunk]:
    """Yield canonical chunks from *raw*, ending with exactly one ``done`` chunk.

    Pulling stops as soon as the decoder reports the terminal condition. A
    failure while pulling is raised as a typed APIError; the stream is never
    silently truncated.
    """
    content = ""
    usage: Usage | None = None
    try:
        async for item in raw:
            d = decoder.decode(item)
            content += d.delta
            if d.usage is not None:
                usage = d.usage
            if d.done:
                yield StreamChunk(
                    delta=d.delta,
                    content=content,
                    done=True,
                    usage=usage,
                    finish_reason=d.finish_reason or "stop",
                    function_calls=d.function_calls,
                )
                return
            if d.delta or d.function_calls or d.usage is not None:
                yield StreamChunk(
                    delta=d.delta,
                    content=content,
                    usage=d.usage,
                    finish_reason=d.finish_reason,
                    function_calls=d.function_calls,
                )

        tail = decoder.finish()
        content += tail.delta
        yield StreamChunk(
            delta=tail.delta,
            content=content,
            done=True,
            usage=tail.usage or usage,
            finish_reason=tail.finish_reason or "stop",
            function_calls=tail.function_calls,
        )
    except Exception as e:
        raise wrap_provider_error(e, provider=provider, phase="stream") from e
    finally:
        try:
            await _close_raw(raw)
        except Exception:
            logger.warning("Failed to close %s stream", provider, exc_info=True)


class ChunkStream:
    """Single-use, pull-based sequence of StreamChunks.

    Iterate it once with ``async for``. A retry requires a fresh
    ``stream_chat`` call; iterating the same object twice is an error.
    """

    def __init__(self, source: AsyncIterator[StreamChunk]) -> None:
        self._source = source
        self._started = False
        self._closed = False

    def __aiter__(self) -> ChunkStream:
        if self._started:
            raise RuntimeError(
                "ChunkStream is single-use; call stream_chat() again to retry"
            )
        self._started = True
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise

    @property
    def closed(self) -> bool:
        """Whether the stream has finished or been closed."""
        return self._closed

    async def aclose(self) -> None:
        """Stop the stream and release its transport."""
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> ChunkStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


async def collect_stream(stream: ChunkStream) -> ChatResponse:
    """Drain *stream* and fold its chunks into a ChatResponse."""
    content = ""
    calls: list[FunctionCall] = []
    usage: Usage | None = None
    finish_reason: FinishReason | None = None
    async for chunk in stream:
        content = chunk.content
        calls.extend(chunk.function_calls)
        if chunk.usage is not None:
            usage = chunk.usage
        if chunk.finish_reason is not None:
            finish_reason = chunk.finish_reason
        if chunk.done:
            break

    if calls and finish_reason in (None, "stop"):
        finish_reason = "tool_calls"
    return ChatResponse(
        message=model_message(content, calls),
        finish_reason=finish_reason or "stop",
        usage=usage,
    )
