"""Canonical conversation model shared by adapters and the orchestrator.

Nothing in this module knows about any provider wire format. Adapters convert
to and from these types at their own boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "model", "tool"]
FinishReason = Literal["stop", "length", "tool_calls", "error"]


@dataclass(frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class FunctionCall:
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = ""


@dataclass(frozen=True)
class FunctionResponse:
    """The result of a tool invocation, addressed to the call id."""

    id: str
    name: str
    result: dict[str, Any] = field(default_factory=dict)


Part = TextPart | FunctionCall | FunctionResponse


@dataclass(frozen=True)
class Message:
    """A single conversation turn in canonical form."""

    role: Role
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, text: str) -> Message:
        """Build a user message holding one text part."""
        return cls(role="user", parts=(TextPart(text),))

    @classmethod
    def model_text(cls, text: str) -> Message:
        """Build a model message holding one text part."""
        return cls(role="model", parts=(TextPart(text),))

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return message_text(self)

    @property
    def function_calls(self) -> tuple[FunctionCall, ...]:
        """Function call parts, in order."""
        return tuple(p for p in self.parts if isinstance(p, FunctionCall))

    @property
    def function_responses(self) -> tuple[FunctionResponse, ...]:
        """Function response parts, in order."""
        return tuple(p for p in self.parts if isinstance(p, FunctionResponse))


def message_text(message: Message) -> str:
    """Return the concatenation of every text part in *message*."""
    return "".join(p.text for p in message.parts if isinstance(p, TextPart))


def model_message(
    text: str = "", function_calls: tuple[FunctionCall, ...] | list[FunctionCall] = ()
) -> Message:
    """Build a model message: optional text part followed by function calls."""
    parts: list[Part] = [TextPart(text)] if text else []
    parts.extend(function_calls)
    return Message(role="model", parts=tuple(parts))


def is_tool_response(message: Message) -> bool:
    """True iff the message is non-empty and every part is a FunctionResponse."""
    return bool(message.parts) and all(
        isinstance(p, FunctionResponse) for p in message.parts
    )


def is_tool_call(message: Message) -> bool:
    """True iff the message is non-empty and every part is a FunctionCall."""
    return bool(message.parts) and all(
        isinstance(p, FunctionCall) for p in message.parts
    )


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters; ``None`` means provider default."""

    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool the model may call: name plus JSON schema for its arguments."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class ChatRequest:
    """A provider-agnostic generation request."""

    model: str
    messages: tuple[Message, ...]
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    tools: tuple[ToolDeclaration, ...] = ()
    system_instruction: str | None = None


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ChatResponse:
    """A complete model reply in canonical form."""

    message: Message
    finish_reason: FinishReason = "stop"
    usage: Usage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Text content of the reply."""
        return self.message.text

    @property
    def function_calls(self) -> tuple[FunctionCall, ...]:
        """Function calls requested by the reply."""
        return self.message.function_calls


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streamed reply.

    ``content`` is the running concatenation of every ``delta`` so far.
    Exactly one chunk per stream has ``done=True`` and it is the last one.
    """

    delta: str = ""
    content: str = ""
    done: bool = False
    usage: Usage | None = None
    finish_reason: FinishReason | None = None
    function_calls: tuple[FunctionCall, ...] = ()


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call scheduled for execution within one turn."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of executing one ToolCallRequest.

    ``fatal`` lets a registry signal that the whole session must stop.
    """

    id: str
    name: str
    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: Exception | None = None
    fatal: bool = False

    @classmethod
    def ok(cls, request: ToolCallRequest, output: dict[str, Any]) -> ToolCallResult:
        """Build a successful result for *request*."""
        return cls(id=request.id, name=request.name, success=True, output=output)

    @classmethod
    def failed(
        cls, request: ToolCallRequest, error: Exception, *, fatal: bool = False
    ) -> ToolCallResult:
        """Build a failed result for *request* carrying *error*."""
        return cls(
            id=request.id,
            name=request.name,
            success=False,
            output={"error": str(error)},
            error=error,
            fatal=fatal,
        )

    def to_part(self) -> FunctionResponse:
        """Render this result as the FunctionResponse sent back to the model."""
        return FunctionResponse(id=self.id, name=self.name, result=dict(self.output))
