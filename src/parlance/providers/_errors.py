"""Mapping of provider SDK failures onto the APIError hierarchy.

Every adapter funnels SDK exceptions through ``wrap_provider_error`` so retry
and fallback decisions read status codes, Retry-After and quota attribution
from APIError fields instead of SDK types.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from parlance._http import QUOTA_STATUS_CODE, RETRYABLE_STATUS_CODES
from parlance.errors import (
    APIError,
    GenericQuotaExceededError,
    ProQuotaExceededError,
    TransportError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

_QUOTA_RE = re.compile(r"Quota exceeded for quota metric '([^']*)'", re.IGNORECASE)
_PRO_METRIC_RE = re.compile(r"\bPro\b.*Requests", re.IGNORECASE)
_SECONDS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s?\s*$")


def _first(exc: BaseException, lookup: Callable[[BaseException], T | None]) -> T | None:
    for e in _walk_exception_chain(exc):
        found = lookup(e)
        if found is not None:
            return found
    return None


def _http_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def _status_of(e: BaseException) -> int | None:
    for attr in ("status_code", "status", "code"):
        status = _http_status(getattr(e, attr, None))
        if status is not None:
            return status
    return _http_status(getattr(getattr(e, "response", None), "status_code", None))


def extract_status_code(exc: BaseException) -> int | None:
    """First HTTP status code found along the exception chain."""
    return _first(exc, _status_of)


def _seconds(raw: Any) -> float | None:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) if raw >= 0 else None
    if isinstance(raw, str):
        m = _SECONDS_RE.match(raw)
        if m:
            return float(m.group(1))
    return None


def _retry_info_delay(e: BaseException) -> float | None:
    # google-genai keeps the parsed body on ``.details``; RetryInfo carries
    # a protobuf duration string such as "8s".
    details = getattr(e, "details", None)
    error = details.get("error") if isinstance(details, dict) else None
    entries = error.get("details") if isinstance(error, dict) else None
    for entry in entries if isinstance(entries, list) else ():
        if isinstance(entry, dict) and "RetryInfo" in str(entry.get("@type", "")):
            delay = _seconds(entry.get("retryDelay"))
            if delay is not None:
                return delay
    return None


def _retry_after_of(e: BaseException) -> float | None:
    delay = _seconds(getattr(e, "retry_after", None))
    if delay is not None:
        return delay
    headers = getattr(getattr(e, "response", None), "headers", None)
    if headers is not None and hasattr(headers, "get"):
        delay = _seconds(headers.get("Retry-After"))
        if delay is not None:
            return delay
    return _retry_info_delay(e)


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Retry-After (header, attribute or Google RetryInfo) in seconds."""
    return _first(exc, _retry_after_of)


def _error_body(text: str) -> dict[str, Any] | None:
    start = text.find("{")
    if start < 0:
        return None
    try:
        parsed = json.loads(text[start:])
    except ValueError:
        return None
    body = parsed.get("error") if isinstance(parsed, dict) else None
    return body if isinstance(body, dict) else None


def unwrap_error_message(text: str) -> tuple[str, int | None]:
    """Innermost readable message and code of a provider error string.

    Bodies look like ``{"error": {"message": ..., "code": ...}}`` and the
    message is sometimes itself such a document. Anything that fails to
    decode leaves the text as it was.
    """
    message: str = text
    code: int | None = None
    body = _error_body(text)
    for _ in range(2):
        if body is None:
            break
        if isinstance(body.get("code"), int):
            code = body["code"]
        inner = body.get("message")
        if not isinstance(inner, str):
            break
        message = inner
        body = _error_body(inner)
    return message, code


def quota_error_class(
    status_code: int | None, message: str
) -> type[APIError] | None:
    """Quota error subclass for a failure, or None when it is not a quota one."""
    metric = _QUOTA_RE.search(message)
    if metric is not None and _PRO_METRIC_RE.search(metric.group(1)):
        return ProQuotaExceededError
    if metric is not None or status_code == QUOTA_STATUS_CODE:
        return GenericQuotaExceededError
    return None


def _auth_hint(provider: str, status_code: int | None, message: str) -> str | None:
    lowered = message.lower()
    key_problem = "api key" in lowered or "api_key" in lowered
    if status_code not in (401, 403) and not (status_code == 400 and key_problem):
        return None
    from parlance.config import api_key_env_var
    from parlance.providers.classifier import ProviderId

    try:
        env_var = api_key_env_var(ProviderId(provider))
    except ValueError:
        env_var = "the provider API key"
    return f"Check credentials/permissions (try setting {env_var})."


def _is_network_failure(e: BaseException) -> bool:
    return isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.RequestError))


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Translate *exc* into an APIError carrying retry and quota metadata.

    Quota failures (429 or a quota metric in the body) become quota errors
    and are never retryable. Failures without a status whose chain holds a
    timeout or httpx request error become TransportError. An APIError passed
    in is returned with missing context filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    cause, body_code = unwrap_error_message(str(exc))
    status = extract_status_code(exc) or body_code
    label = message or f"{provider} {phase} failed"
    if status is not None:
        label += f" (status={status})"

    err_cls = quota_error_class(status, cause)
    retryable = False
    if err_cls is None:
        if status is None and _first(exc, lambda e: _is_network_failure(e) or None):
            err_cls, retryable = TransportError, True
        else:
            err_cls = APIError
            retryable = status in RETRYABLE_STATUS_CODES

    return err_cls(
        f"{label}: {cause}" if cause else label,
        hint=hint or _auth_hint(provider, status, cause),
        retryable=retryable,
        status_code=status,
        retry_after_s=extract_retry_after_s(exc),
        provider=provider,
        phase=phase,
    )
