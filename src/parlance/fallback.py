"""Rate-limit and fallback policy.

Classifies provider failures and decides whether a quota error should
downgrade the session to the fallback model or end it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Literal

from parlance._http import QUOTA_STATUS_CODE
from parlance.errors import (
    APIError,
    GenericQuotaExceededError,
    ParlanceError,
    ProQuotaExceededError,
    QuotaExceededError,
    TransportError,
)
from parlance.providers._errors import unwrap_error_message

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Coarse classes of provider failure."""

    API = "api"
    PRO_QUOTA = "pro_quota"
    GENERIC_QUOTA = "generic_quota"
    TRANSPORT = "transport"


_QUOTA_KINDS = frozenset({ErrorKind.PRO_QUOTA, ErrorKind.GENERIC_QUOTA})


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception onto an ErrorKind."""
    if isinstance(exc, ProQuotaExceededError):
        return ErrorKind.PRO_QUOTA
    if isinstance(exc, (GenericQuotaExceededError, QuotaExceededError)):
        return ErrorKind.GENERIC_QUOTA
    if isinstance(exc, TransportError):
        return ErrorKind.TRANSPORT
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.TRANSPORT
    return ErrorKind.API


def _switch_message(kind: ErrorKind, active_model: str, fallback_model: str) -> str:
    if kind is ErrorKind.PRO_QUOTA:
        return (
            f"You have reached your {active_model} quota limit. You will be "
            f"switched to the {fallback_model} model for the rest of this session."
        )
    return (
        "Possible quota limitations in place or slow response times detected. "
        f"Switching to the {fallback_model} model for the rest of this session."
    )


def _abort_message(kind: ErrorKind, active_model: str) -> str:
    if kind in _QUOTA_KINDS:
        return (
            f"You have reached your quota limit for {active_model} and no further "
            "fallback is available. Please wait and try again later."
        )
    if kind is ErrorKind.TRANSPORT:
        return "The provider could not be reached. Check your network and retry."
    return "The provider rejected the request."


@dataclass(frozen=True)
class FallbackDecision:
    """Outcome of a fallback check."""

    action: Literal["switch", "abort"]
    kind: ErrorKind
    message: str
    model: str | None = None

    @property
    def should_switch(self) -> bool:
        """Whether the session should retry on ``model``."""
        return self.action == "switch"


@dataclass(frozen=True)
class FallbackPolicy:
    """Downgrade to *fallback_model* on quota errors, once.

    ``fallback_model=None`` disables switching entirely.
    """

    fallback_model: str | None = None

    def decide(self, exc: BaseException, active_model: str) -> FallbackDecision:
        """Decide how to react to *exc* raised while *active_model* was in use."""
        kind = classify_error(exc)
        if (
            kind in _QUOTA_KINDS
            and self.fallback_model
            and self.fallback_model != active_model
        ):
            logger.warning(
                "Quota exceeded on %s (%s); falling back to %s",
                active_model,
                kind.value,
                self.fallback_model,
            )
            return FallbackDecision(
                action="switch",
                kind=kind,
                model=self.fallback_model,
                message=_switch_message(kind, active_model, self.fallback_model),
            )
        return FallbackDecision(
            action="abort", kind=kind, message=_abort_message(kind, active_model)
        )


def format_api_error(
    exc: BaseException | str,
    *,
    active_model: str | None = None,
    fallback_model: str | None = None,
) -> str:
    """Render an error as ``[API Error: …]`` for display.

    String-encoded JSON bodies are unwrapped (twice if nested). Quota errors
    get a short explanation appended.
    """
    if isinstance(exc, str):
        message, code = unwrap_error_message(exc)
        status = code
    else:
        message, code = unwrap_error_message(str(exc))
        status = exc.status_code if isinstance(exc, APIError) else None
        status = status if status is not None else code

    text = f"[API Error: {message}]"
    if isinstance(exc, ParlanceError) and exc.hint:
        text += f"\nHint: {exc.hint}"

    if status == QUOTA_STATUS_CODE or isinstance(exc, QuotaExceededError):
        if fallback_model and fallback_model != active_model:
            text += (
                "\nPossible quota limitations in place or slow response times "
                f"detected. Switching to the {fallback_model} model for the rest "
                "of this session."
            )
        else:
            text += "\nPlease wait and try again later."
    return text
