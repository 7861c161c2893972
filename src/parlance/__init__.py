"""Parlance: a terminal LLM agent that can call local tools.

Public API:
    - run(): Run one prompt through the agent loop and return the final text
    - load_config(): Resolve configuration from env, settings file and overrides
    - Session / Orchestrator: Drive the loop yourself and consume events
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from parlance.config import Config, ProviderConfig, load_config
from parlance.errors import (
    AbortError,
    APIError,
    ConfigurationError,
    MaxTurnsExceededError,
    ParlanceError,
    QuotaExceededError,
    SessionTimeoutError,
    ToolError,
    TransportError,
)
from parlance.events import (
    Aborted,
    Completed,
    Errored,
    Notice,
    TextDelta,
    ToolExecuting,
)
from parlance.orchestrator import Orchestrator
from parlance.session import CancellationToken, Session

if TYPE_CHECKING:
    from parlance.tools.registry import ToolRegistry

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("parlance")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("parlance").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def run(
    prompt: str,
    *,
    config: Config | None = None,
    tools: ToolRegistry | None = None,
) -> str:
    """Run *prompt* to completion and return the model's final text.

    Args:
        prompt: The user prompt.
        config: Resolved configuration; ``load_config()`` when omitted.
        tools: Tool registry offered to the model; none when omitted.

    Raises:
        SessionTimeoutError: ``config.timeout_s`` elapsed first.
        AbortError: The session was cancelled.
        ParlanceError: Any unrecoverable provider, tool or turn-ceiling failure.

    Example:
        config = load_config(model="gemini-2.5-flash")
        answer = await run("What files are in this directory?", config=config)
    """
    resolved = config if config is not None else load_config()
    try:
        async with asyncio.timeout(resolved.timeout_s):
            async with Session(resolved) as session:
                async for event in Orchestrator(session, tools).run(prompt):
                    if isinstance(event, Completed):
                        return event.text
                    if isinstance(event, Errored):
                        raise event.error
                    if isinstance(event, Aborted):
                        raise AbortError(event.reason)
    except TimeoutError as e:
        raise SessionTimeoutError(
            f"Operation timed out after {resolved.timeout_s:g} seconds. This may "
            "be due to API quota limits or service unavailability.",
            hint="Raise the timeout or check provider status.",
        ) from e
    raise RuntimeError("orchestrator ended without a terminal event")


__all__ = [
    "APIError",
    "AbortError",
    "Aborted",
    "CancellationToken",
    "Completed",
    "Config",
    "ConfigurationError",
    "Errored",
    "MaxTurnsExceededError",
    "Notice",
    "Orchestrator",
    "ParlanceError",
    "ProviderConfig",
    "QuotaExceededError",
    "Session",
    "SessionTimeoutError",
    "TextDelta",
    "ToolError",
    "ToolExecuting",
    "TransportError",
    "load_config",
    "run",
]
