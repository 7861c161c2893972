"""Bounded retry for request/response provider calls.

Streams are single-use and never pass through here. Quota errors are not
retried either: the fallback policy decides what happens to them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from parlance._http import RETRYABLE_STATUS_CODES
from parlance.errors import (
    APIError,
    QuotaExceededError,
    TransportError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry one adapter call.

    ``max_retries`` counts retries after the first attempt, matching
    ``ProviderConfig.max_retries``. Sleeps grow exponentially from
    ``base_delay_s`` and are capped by ``max_delay_s``; a provider's
    Retry-After wins when it is longer. ``deadline_s`` bounds the total
    time spent, sleeps included.
    """

    max_retries: int = 2
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    jitter: bool = True
    deadline_s: float | None = 20.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("RetryPolicy delays must be >= 0")
        if self.deadline_s is not None and self.deadline_s <= 0:
            raise ValueError("RetryPolicy.deadline_s must be > 0 or None")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int, error: BaseException) -> float:
        """Seconds to sleep before retry number *retry_number* (1-based)."""
        delay = min(self.max_delay_s, self.base_delay_s * 2 ** (retry_number - 1))
        if self.jitter and delay > 0:
            delay = random.uniform(delay / 2, delay)  # noqa: S311
        if isinstance(error, APIError) and error.retry_after_s is not None:
            delay = max(delay, error.retry_after_s)
        return delay


def is_transient(exc: BaseException) -> bool:
    """Whether a failed call is worth repeating unchanged.

    Cancellation and quota exhaustion never are. An APIError is when the
    adapter marked it retryable or its status is a transient one; raw
    timeouts and httpx request errors anywhere in the chain also count.
    """
    if isinstance(exc, (asyncio.CancelledError, QuotaExceededError)):
        return False
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, APIError):
        return exc.retryable is True or exc.status_code in RETRYABLE_STATUS_CODES
    return any(
        isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.RequestError))
        for e in _walk_exception_chain(exc)
    )


async def retry_async(
    call: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool] = is_transient,
) -> T:
    """Await ``call()``, repeating it on transient failure within *policy*."""
    deadline = (
        time.monotonic() + policy.deadline_s if policy.deadline_s is not None else None
    )
    retries = 0
    while True:
        try:
            return await call()
        except Exception as exc:
            if retries >= policy.max_retries or not retryable(exc):
                raise
            retries += 1
            delay = policy.delay_for(retries, exc)
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)
            logger.debug(
                "Retry %d/%d after %s in %.2fs",
                retries,
                policy.max_retries,
                type(exc).__name__,
                delay,
            )
            await asyncio.sleep(delay)
