"""Canonical conversation model."""

from __future__ import annotations

import pytest

from parlance.errors import ToolExecutionError
from parlance.messages import (
    ChatResponse,
    FunctionCall,
    FunctionResponse,
    Message,
    TextPart,
    ToolCallRequest,
    ToolCallResult,
    is_tool_call,
    is_tool_response,
    message_text,
    model_message,
)

pytestmark = pytest.mark.unit


def test_message_text_concatenates_text_parts_only() -> None:
    msg = Message(
        role="model",
        parts=(TextPart("Hello, "), FunctionCall(name="f", id="1"), TextPart("world")),
    )

    assert message_text(msg) == "Hello, world"
    assert msg.text == "Hello, world"


def test_message_text_of_empty_message_is_empty() -> None:
    assert message_text(Message(role="model")) == ""


def test_model_message_omits_empty_text_part() -> None:
    call = FunctionCall(name="read_file", args={"path": "a"}, id="c1")

    msg = model_message("", [call])

    assert msg.role == "model"
    assert msg.parts == (call,)
    assert is_tool_call(msg)


def test_model_message_keeps_text_before_calls() -> None:
    call = FunctionCall(name="read_file", id="c1")

    msg = model_message("Let me look.", (call,))

    assert isinstance(msg.parts[0], TextPart)
    assert msg.function_calls == (call,)
    assert not is_tool_call(msg)


def test_tool_predicates_reject_empty_and_mixed_messages() -> None:
    response = FunctionResponse(id="c1", name="f", result={"ok": True})

    assert not is_tool_response(Message(role="tool"))
    assert not is_tool_call(Message(role="model"))
    assert is_tool_response(Message(role="tool", parts=(response,)))
    assert not is_tool_response(
        Message(role="tool", parts=(response, TextPart("extra")))
    )


def test_chat_response_exposes_text_and_calls() -> None:
    call = FunctionCall(name="f", id="c1")
    resp = ChatResponse(message=model_message("thinking", [call]))

    assert resp.text == "thinking"
    assert resp.function_calls == (call,)
    assert resp.finish_reason == "stop"


def test_tool_call_result_ok_renders_output_as_response_part() -> None:
    req = ToolCallRequest(id="c1", name="read_file", args={"path": "x"})

    part = ToolCallResult.ok(req, {"content": "1: hi"}).to_part()

    assert part == FunctionResponse(
        id="c1", name="read_file", result={"content": "1: hi"}
    )


def test_tool_call_result_failed_carries_error_message() -> None:
    req = ToolCallRequest(id="c2", name="read_file")
    err = ToolExecutionError("boom", tool_name="read_file")

    result = ToolCallResult.failed(req, err)

    assert result.success is False
    assert result.error is err
    assert result.fatal is False
    assert result.to_part().result == {"error": "boom"}


def test_messages_are_immutable() -> None:
    msg = Message.user("hi")

    with pytest.raises(AttributeError):
        msg.role = "model"  # type: ignore[misc]
