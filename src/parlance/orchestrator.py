"""Turn orchestrator: the agent loop.

Each iteration asks the model, streams its text upward, executes any tool
calls it requested (concurrently, with a full barrier) and feeds the results
back, until the model answers without tools, the turn ceiling is reached, an
unrecoverable error occurs, or the session is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from parlance.errors import (
    AbortError,
    MaxTurnsExceededError,
    QuotaExceededError,
    ToolExecutionError,
)
from parlance.events import (
    Aborted,
    Completed,
    Errored,
    Notice,
    OrchestratorState,
    TextDelta,
    ToolExecuting,
)
from parlance.fallback import FallbackPolicy
from parlance.messages import (
    ChatRequest,
    ChatResponse,
    FunctionCall,
    Message,
    ToolCallRequest,
    ToolCallResult,
    Usage,
    model_message,
)
from parlance.providers._utils import new_call_id
from parlance.tools.registry import LocalToolRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

    from parlance.events import Event
    from parlance.messages import StreamChunk
    from parlance.providers.base import Provider
    from parlance.session import CancellationToken, Session, Turn
    from parlance.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _unless_cancelled(token: CancellationToken, awaitable: Awaitable[T]) -> T:
    """Await *awaitable*, abandoning it as soon as *token* is cancelled."""
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if token.is_cancelled() and not task.cancelled():
        task.exception()  # cancellation wins over a late result or failure
    token.raise_if_cancelled()
    return task.result()


async def _next_chunk(chunks: AsyncIterator[StreamChunk]) -> StreamChunk | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


def _add_usage(total: Usage | None, usage: Usage | None) -> Usage | None:
    if usage is None:
        return total
    if total is None:
        return usage
    return Usage(
        prompt_tokens=total.prompt_tokens + usage.prompt_tokens,
        completion_tokens=total.completion_tokens + usage.completion_tokens,
        total_tokens=total.total_tokens + usage.total_tokens,
    )


def _unique_ids(calls: tuple[FunctionCall, ...]) -> tuple[FunctionCall, ...]:
    """Give every call in a turn a distinct, non-empty id."""
    seen: set[str] = set()
    out: list[FunctionCall] = []
    for call in calls:
        call_id = call.id
        if not call_id or call_id in seen:
            call_id = new_call_id()
        seen.add(call_id)
        out.append(FunctionCall(name=call.name, args=call.args, id=call_id))
    return tuple(out)


class Orchestrator:
    """Drive one session's turn loop and report progress as events."""

    def __init__(
        self,
        session: Session,
        tools: ToolRegistry | None = None,
        *,
        fallback: FallbackPolicy | None = None,
    ) -> None:
        self.session = session
        self.tools: ToolRegistry = tools if tools is not None else LocalToolRegistry()
        self.fallback = (
            fallback if fallback is not None else FallbackPolicy(session.fallback_model)
        )
        self.state = OrchestratorState.AWAITING_MODEL
        self.usage: Usage | None = None

    async def run(self, prompt: str) -> AsyncIterator[Event]:
        """Append *prompt* and run the loop, yielding events.

        Yields zero or more TextDelta/ToolExecuting/Notice events followed by
        exactly one terminal Completed, Errored or Aborted event.
        """
        self.session.history.append(Message.user(prompt))
        self.state = OrchestratorState.AWAITING_MODEL
        try:
            async for event in self._loop():
                yield event
        except AbortError as e:
            self.state = OrchestratorState.ABORTED
            logger.debug("Session aborted: %s", e)
            yield Aborted(reason=str(e), turns=len(self.session.turns))
        except Exception as e:
            self.state = OrchestratorState.ERROR
            logger.debug("Session failed", exc_info=True)
            yield Errored(error=e, turns=len(self.session.turns))

    async def _loop(self) -> AsyncIterator[Event]:
        session = self.session
        token = session.token
        while True:
            token.raise_if_cancelled()

            if len(session.turns) >= session.max_turns:
                self.state = OrchestratorState.ERROR
                yield Errored(
                    error=MaxTurnsExceededError(
                        f"Reached the maximum of {session.max_turns} turns",
                        hint="Raise --max-turns or PARLANCE_MAX_SESSION_TURNS.",
                    ),
                    turns=len(session.turns),
                )
                return

            turn = session.start_turn()
            self.state = OrchestratorState.AWAITING_MODEL
            logger.debug("Turn %d: asking %s", turn.index, session.active_model)

            response: ChatResponse | None = None
            async for item in self._ask_with_fallback(turn):
                if isinstance(item, ChatResponse):
                    response = item
                else:
                    yield item
            if response is None:  # pragma: no cover
                raise RuntimeError("model call produced no response")
            self.usage = _add_usage(self.usage, response.usage)

            calls = response.function_calls
            if not calls:
                if response.message.parts:
                    session.history.append(response.message)
                self.state = OrchestratorState.DONE
                yield Completed(
                    text=response.text, usage=self.usage, turns=len(session.turns)
                )
                return

            self.state = OrchestratorState.TOOL_CALLS_PENDING
            calls = _unique_ids(calls)
            adapter = session.adapter()
            text = response.text if adapter.capabilities.interleaved_text else ""
            session.history.append(model_message(text, calls))
            turn.pending = [
                ToolCallRequest(id=c.id, name=c.name, args=c.args) for c in calls
            ]
            for request in turn.pending:
                yield ToolExecuting(
                    id=request.id, name=request.name, args=request.args, turn=turn.index
                )

            self.state = OrchestratorState.EXECUTING_TOOLS
            results = await self._execute(turn.pending)
            session.history.append(
                Message(role="tool", parts=tuple(r.to_part() for r in results))
            )
            turn.pending = []

            fatal = next((r for r in results if r.fatal), None)
            if fatal is not None:
                self.state = OrchestratorState.ERROR
                yield Errored(
                    error=fatal.error
                    or ToolExecutionError(
                        f"Tool {fatal.name} reported a fatal failure",
                        tool_name=fatal.name,
                    ),
                    turns=len(session.turns),
                )
                return

    async def _ask_with_fallback(
        self, turn: Turn
    ) -> AsyncIterator[TextDelta | Notice | ChatResponse]:
        """Ask the model, switching to the fallback model at most once."""
        switched = False
        while True:
            # Text already shown to the caller cannot be taken back, so a
            # quota error after the first delta is terminal.
            emitted = False
            try:
                async for item in self._ask_model(turn):
                    emitted = emitted or isinstance(item, TextDelta)
                    yield item
                return
            except QuotaExceededError as e:
                if switched or emitted:
                    raise
                decision = self.fallback.decide(e, self.session.active_model)
                if not decision.should_switch or decision.model is None:
                    raise
                self.session.switch_model(decision.model)
                switched = True
                yield Notice(message=decision.message, turn=turn.index)

    def _request(self, adapter: Provider) -> ChatRequest:
        session = self.session
        tools = (
            tuple(self.tools.get_function_declarations())
            if adapter.capabilities.tools
            else ()
        )
        return ChatRequest(
            model=session.active_model,
            messages=tuple(session.history),
            generation=session.config.generation,
            tools=tools,
            system_instruction=session.config.system_instruction,
        )

    async def _ask_model(
        self, turn: Turn
    ) -> AsyncIterator[TextDelta | ChatResponse]:
        """Yield text deltas as they arrive, then the complete ChatResponse."""
        session = self.session
        token = session.token
        adapter = session.adapter()
        request = self._request(adapter)

        if not (session.config.stream and adapter.capabilities.streaming):
            response = await _unless_cancelled(token, adapter.chat(request))
            if response.text:
                yield TextDelta(text=response.text, turn=turn.index)
            yield response
            return

        content = ""
        calls: list[FunctionCall] = []
        usage: Usage | None = None
        finish = None
        stream = adapter.stream_chat(request)
        chunks = aiter(stream)
        try:
            while True:
                chunk = await _unless_cancelled(token, _next_chunk(chunks))
                if chunk is None:
                    break
                content = chunk.content
                calls.extend(chunk.function_calls)
                if chunk.usage is not None:
                    usage = chunk.usage
                if chunk.finish_reason is not None:
                    finish = chunk.finish_reason
                if chunk.delta:
                    yield TextDelta(text=chunk.delta, turn=turn.index)
                    token.raise_if_cancelled()
                if chunk.done:
                    break
        finally:
            await stream.aclose()

        if calls and finish in (None, "stop"):
            finish = "tool_calls"
        yield ChatResponse(
            message=model_message(content, calls),
            finish_reason=finish or "stop",
            usage=usage,
        )

    async def _execute(self, requests: list[ToolCallRequest]) -> list[ToolCallResult]:
        """Run every request concurrently; results come back in request order."""
        token = self.session.token

        async def run_one(request: ToolCallRequest) -> ToolCallResult:
            try:
                return await self.tools.execute_tool_call(request, token)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Tool registry raised for %s", request.name, exc_info=True
                )
                return ToolCallResult.failed(
                    request,
                    ToolExecutionError(
                        f"Tool {request.name} raised: {e}", tool_name=request.name
                    ),
                )

        results = await asyncio.gather(*(run_one(r) for r in requests))
        for result in results:
            logger.debug(
                "Tool %s (id=%s) %s",
                result.name,
                result.id,
                "succeeded" if result.success else "failed",
            )
        return list(results)
