"""Events emitted by the orchestrator to its caller."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from parlance.messages import Usage


class OrchestratorState(str, Enum):
    """Turn-loop states."""

    AWAITING_MODEL = "awaiting_model"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TextDelta:
    """Incremental model text for display."""

    text: str
    turn: int


@dataclass(frozen=True)
class ToolExecuting:
    """A tool call is about to run."""

    id: str
    name: str
    args: dict[str, Any]
    turn: int


@dataclass(frozen=True)
class Notice:
    """Informational, non-fatal message (e.g. a model downgrade)."""

    message: str
    turn: int


@dataclass(frozen=True)
class Completed:
    """Terminal: the model answered without requesting tools."""

    text: str
    usage: Usage | None = None
    turns: int = 0

    exit_code = 0


@dataclass(frozen=True)
class Errored:
    """Terminal: an unrecoverable provider, tool or budget failure."""

    error: BaseException
    turns: int = 0

    exit_code = 1


@dataclass(frozen=True)
class Aborted:
    """Terminal: the caller cancelled the session."""

    reason: str = "cancelled"
    turns: int = 0

    exit_code = 130


Event = TextDelta | ToolExecuting | Notice | Completed | Errored | Aborted
TerminalEvent = Completed | Errored | Aborted


def is_terminal(event: Event) -> bool:
    """Whether *event* ends the session."""
    return isinstance(event, (Completed, Errored, Aborted))
