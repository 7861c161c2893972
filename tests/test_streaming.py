"""Stream normalization contract.

Every adapter stream must yield chunks whose ``content`` is the running
concatenation of deltas and end with exactly one ``done`` chunk.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest

from parlance.errors import APIError, GenericQuotaExceededError
from parlance.messages import FunctionCall, Usage
from parlance.streaming import ChunkStream, Decoded, collect_stream, normalize_stream

pytestmark = pytest.mark.contract


class _Raw:
    """Async iterator over canned items that records whether it was closed."""

    def __init__(self, items: list[Any], *, fail_after: int | None = None) -> None:
        self.items = list(items)
        self.fail_after = fail_after
        self.pulled = 0
        self.closed = False

    def __aiter__(self) -> _Raw:
        return self

    async def __anext__(self) -> Any:
        if self.fail_after is not None and self.pulled >= self.fail_after:
            raise RuntimeError("Quota exceeded for quota metric 'requests'")
        if not self.items:
            raise StopAsyncIteration
        self.pulled += 1
        return self.items.pop(0)

    async def aclose(self) -> None:
        self.closed = True


class _TextDecoder:
    """Items are strings; ``"<END>"`` is the terminal signal."""

    def decode(self, raw: Any) -> Decoded:
        if raw == "<END>":
            return Decoded(done=True, finish_reason="stop", usage=Usage(1, 2, 3))
        return Decoded(delta=raw)

    def finish(self) -> Decoded:
        return Decoded(
            done=True,
            finish_reason="tool_calls",
            function_calls=(FunctionCall(name="f", id="c1"),),
        )


async def _drain(stream: AsyncIterator[Any]) -> list[Any]:
    return [chunk async for chunk in stream]


@pytest.mark.asyncio
async def test_content_accumulates_and_single_done_chunk_ends_stream() -> None:
    raw = _Raw(["Hel", "lo", "<END>", "ignored"])

    chunks = await _drain(normalize_stream(raw, _TextDecoder(), provider="test"))

    assert [c.delta for c in chunks] == ["Hel", "lo", ""]
    assert [c.content for c in chunks] == ["Hel", "Hello", "Hello"]
    assert [c.done for c in chunks] == [False, False, True]
    assert chunks[-1].usage == Usage(1, 2, 3)
    assert raw.items == ["ignored"]
    assert raw.closed


@pytest.mark.asyncio
async def test_exhausted_stream_flushes_decoder_state() -> None:
    raw = _Raw(["a", "b"])

    chunks = await _drain(normalize_stream(raw, _TextDecoder(), provider="test"))

    assert sum(c.done for c in chunks) == 1
    final = chunks[-1]
    assert final.done
    assert final.content == "ab"
    assert final.finish_reason == "tool_calls"
    assert final.function_calls == (FunctionCall(name="f", id="c1"),)


@pytest.mark.asyncio
async def test_mid_stream_failure_raises_typed_error_and_closes() -> None:
    raw = _Raw(["a", "b", "c"], fail_after=1)

    seen: list[str] = []
    with pytest.raises(GenericQuotaExceededError) as excinfo:
        async for chunk in normalize_stream(raw, _TextDecoder(), provider="test"):
            seen.append(chunk.delta)

    assert seen == ["a"]
    assert excinfo.value.phase == "stream"
    assert excinfo.value.provider == "test"
    assert isinstance(excinfo.value, APIError)
    assert raw.closed


@pytest.mark.asyncio
async def test_chunk_stream_is_single_use() -> None:
    stream = ChunkStream(normalize_stream(_Raw(["x"]), _TextDecoder(), provider="t"))

    await _drain(stream)

    with pytest.raises(RuntimeError, match="single-use"):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_chunk_stream_aclose_releases_transport_early() -> None:
    raw = _Raw(["a", "b", "c"])
    stream = ChunkStream(normalize_stream(raw, _TextDecoder(), provider="t"))

    async with stream:
        async for _chunk in stream:
            break

    assert stream.closed
    assert raw.closed


@pytest.mark.asyncio
async def test_collect_stream_folds_chunks_into_response() -> None:
    raw = _Raw(["a", "b"])
    stream = ChunkStream(normalize_stream(raw, _TextDecoder(), provider="t"))

    response = await collect_stream(stream)

    assert response.text == "ab"
    assert response.finish_reason == "tool_calls"
    assert [c.name for c in response.function_calls] == ["f"]
