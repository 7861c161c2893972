"""Tool registry contract and the in-process implementation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from parlance.errors import AbortError, ToolError, ToolExecutionError, ToolNotFoundError
from parlance.messages import ToolCallRequest, ToolCallResult, ToolDeclaration

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from parlance.session import CancellationToken

    ToolHandler = Callable[
        [dict[str, Any], CancellationToken], Awaitable[dict[str, Any]]
    ]

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolRegistry(Protocol):
    """What the orchestrator needs from a tool provider.

    ``execute_tool_call`` returns a failed ToolCallResult for expected domain
    failures and raises only for infrastructure failures.
    """

    def get_function_declarations(self) -> list[ToolDeclaration]:
        """Declarations advertised to the model."""
        ...

    async def execute_tool_call(
        self, request: ToolCallRequest, token: CancellationToken
    ) -> ToolCallResult:
        """Execute one call, honoring *token* cooperatively."""
        ...


@dataclass(frozen=True)
class Tool:
    """A named async capability the model may invoke."""

    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def declaration(self) -> ToolDeclaration:
        """The declaration sent to providers."""
        return ToolDeclaration(
            name=self.name, description=self.description, parameters=self.parameters
        )

    def missing_arguments(self, args: dict[str, Any]) -> list[str]:
        """Required schema properties absent from *args*."""
        required = self.parameters.get("required") or []
        return [name for name in required if name not in args]


class LocalToolRegistry:
    """Registry of in-process tools."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Add *tool*; names must be unique."""
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_function_declarations(self) -> list[ToolDeclaration]:
        """Declarations for every registered tool, in registration order."""
        return [tool.declaration() for tool in self._tools.values()]

    async def execute_tool_call(
        self, request: ToolCallRequest, token: CancellationToken
    ) -> ToolCallResult:
        """Run the named tool; lookup and handler failures become failed results."""
        tool = self._tools.get(request.name)
        if tool is None:
            logger.debug("Unknown tool requested: %s", request.name)
            return ToolCallResult.failed(
                request,
                ToolNotFoundError(
                    f"Tool not found: {request.name}",
                    hint=f"Available tools: {', '.join(self._tools) or 'none'}",
                    tool_name=request.name,
                ),
            )

        missing = tool.missing_arguments(request.args)
        if missing:
            return ToolCallResult.failed(
                request,
                ToolExecutionError(
                    f"Missing required argument(s) for {tool.name}: "
                    + ", ".join(missing),
                    tool_name=tool.name,
                ),
            )

        if token.is_cancelled():
            return ToolCallResult.failed(request, AbortError("Cancelled before start"))

        logger.debug("Executing tool %s (id=%s)", tool.name, request.id)
        try:
            output = await tool.handler(dict(request.args), token)
        except asyncio.CancelledError:
            raise
        except (ToolError, AbortError) as e:
            return ToolCallResult.failed(request, e)
        except Exception as e:
            logger.debug("Tool %s failed", tool.name, exc_info=True)
            return ToolCallResult.failed(
                request,
                ToolExecutionError(
                    f"{tool.name} failed: {e}", tool_name=tool.name
                ),
            )
        return ToolCallResult.ok(request, output)
