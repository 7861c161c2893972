"""Exception hierarchy for Parlance."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ParlanceError(Exception):
    """Base exception for all Parlance errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ParlanceError):
    """Configuration validation or resolution failed."""


class UnsupportedOperationError(ParlanceError):
    """The provider does not implement the requested capability."""


class APIError(ParlanceError):
    """A provider rejected or failed a request.

    Providers attach retry metadata so callers can make bounded retry and
    fallback decisions without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class QuotaExceededError(APIError):
    """Usage allowance exhausted (commonly HTTP 429)."""


class ProQuotaExceededError(QuotaExceededError):
    """Quota exhausted for a specific premium model."""


class GenericQuotaExceededError(QuotaExceededError):
    """Quota exhausted without a model-specific attribution."""


class TransportError(APIError):
    """Network failure or timeout talking to a provider."""


class ToolError(ParlanceError):
    """Base class for tool lookup/execution failures."""

    def __init__(
        self, message: str, *, hint: str | None = None, tool_name: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """The model requested a tool the registry does not know."""


class ToolExecutionError(ToolError):
    """A tool failed while executing."""


class SessionTimeoutError(ParlanceError):
    """The session exceeded its wall-clock budget."""


class AbortError(ParlanceError):
    """The session was cancelled by the caller."""


class MaxTurnsExceededError(ParlanceError):
    """The session reached its turn ceiling."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, once each."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
