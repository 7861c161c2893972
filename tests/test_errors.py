"""Error hierarchy and provider error mapping."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from parlance.errors import (
    APIError,
    GenericQuotaExceededError,
    ParlanceError,
    ProQuotaExceededError,
    QuotaExceededError,
    ToolError,
    ToolNotFoundError,
    TransportError,
)
from parlance.providers._errors import (
    extract_retry_after_s,
    extract_status_code,
    unwrap_error_message,
    wrap_provider_error,
)

pytestmark = pytest.mark.unit

PRO_QUOTA_TEXT = (
    "Quota exceeded for quota metric 'Gemini 2.5 Pro Requests' and limit "
    "'Gemini 2.5 Pro Requests per day per user per tier'"
)


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None):
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    def __init__(self, message: str, status_code: int, **headers: str) -> None:
        super().__init__(message)
        headers = {k.replace("_", "-"): v for k, v in headers.items()}
        self.response = _Resp(status_code, headers)


def test_api_error_structured_metadata() -> None:
    err = APIError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=503,
        retry_after_s=2.0,
        provider="gemini",
        phase="chat",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 503
    assert err.retry_after_s == 2.0
    assert err.provider == "gemini"
    assert err.phase == "chat"


def test_subclass_hierarchy() -> None:
    assert issubclass(ProQuotaExceededError, QuotaExceededError)
    assert issubclass(GenericQuotaExceededError, QuotaExceededError)
    assert issubclass(QuotaExceededError, APIError)
    assert issubclass(TransportError, APIError)
    assert issubclass(ToolNotFoundError, ToolError)
    assert issubclass(APIError, ParlanceError)
    assert ToolNotFoundError("x", tool_name="t").tool_name == "t"


def test_wrap_maps_429_to_generic_quota_and_never_retryable() -> None:
    err = wrap_provider_error(
        _SdkError("rate limited", 429, Retry_After="2"),
        provider="openai",
        phase="chat",
    )

    assert isinstance(err, GenericQuotaExceededError)
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is False
    assert err.provider == "openai"
    assert err.phase == "chat"
    assert "status=429" in str(err)


def test_wrap_detects_pro_quota_message() -> None:
    err = wrap_provider_error(
        _SdkError(PRO_QUOTA_TEXT, 429), provider="gemini", phase="chat"
    )

    assert isinstance(err, ProQuotaExceededError)


def test_wrap_detects_quota_message_without_status() -> None:
    err = wrap_provider_error(
        RuntimeError("Quota exceeded for quota metric 'Requests per minute'"),
        provider="gemini",
        phase="stream",
    )

    assert isinstance(err, GenericQuotaExceededError)
    assert err.phase == "stream"


@pytest.mark.parametrize("status", [500, 502, 503, 504, 408])
def test_wrap_marks_transient_statuses_retryable(status: int) -> None:
    err = wrap_provider_error(_SdkError("oops", status), provider="x", phase="chat")

    assert type(err) is APIError
    assert err.retryable is True


def test_wrap_marks_client_errors_not_retryable_with_auth_hint() -> None:
    err = wrap_provider_error(
        _SdkError("invalid key", 401), provider="anthropic", phase="chat"
    )

    assert err.retryable is False
    assert err.hint is not None
    assert "ANTHROPIC_API_KEY" in err.hint


def test_wrap_maps_network_failures_to_transport_error() -> None:
    request = httpx.Request("POST", "https://example.invalid")
    try:
        try:
            raise httpx.ConnectError("connection refused", request=request)
        except httpx.ConnectError as inner:
            raise RuntimeError("SDK connection error") from inner
    except RuntimeError as outer:
        err = wrap_provider_error(outer, provider="groq", phase="chat")

    assert isinstance(err, TransportError)
    assert err.retryable is True


def test_wrap_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)

    wrapped = wrap_provider_error(base, provider="gemini", phase="chat")

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.provider == "gemini"
    assert wrapped.phase == "chat"


def test_wrap_reraises_cancellation() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(asyncio.CancelledError(), provider="x", phase="chat")


def test_extract_status_code_walks_cause_chain() -> None:
    inner = _SdkError("inner", 503)
    outer = RuntimeError("outer")
    outer.__cause__ = inner

    assert extract_status_code(outer) == 503


def test_extract_retry_after_from_google_retry_info() -> None:
    class _GoogleError(Exception):
        details = {
            "error": {
                "details": [
                    {
                        "@type": "type.googleapis.com/google.rpc.RetryInfo",
                        "retryDelay": "8s",
                    }
                ]
            }
        }

    assert extract_retry_after_s(_GoogleError("quota")) == 8.0


def test_unwrap_error_message_handles_nested_json() -> None:
    inner = json.dumps({"error": {"message": "Resource exhausted", "code": 429}})
    outer = "got status 400: " + json.dumps({"error": {"message": inner, "code": 400}})

    assert unwrap_error_message(outer) == ("Resource exhausted", 429)


def test_unwrap_error_message_is_lenient_on_plain_text() -> None:
    assert unwrap_error_message("plain failure {not json") == (
        "plain failure {not json",
        None,
    )
