"""Token estimation for providers without native counting."""

from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING

from parlance.errors import UnsupportedOperationError
from parlance.messages import FunctionCall, FunctionResponse, TextPart
from parlance.providers.classifier import supports_native_token_counting

if TYPE_CHECKING:
    from parlance.messages import ChatRequest
    from parlance.providers.base import Provider
    from parlance.providers.classifier import ProviderId

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate tokens as ``ceil(characters / 4)``.

    Counts Unicode code points, so the result is non-decreasing in
    ``len(text)``; ``""`` estimates to 0 and ``"aaaa"`` to 1.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _request_text(request: ChatRequest) -> str:
    chunks: list[str] = []
    if request.system_instruction:
        chunks.append(request.system_instruction)
    for message in request.messages:
        for part in message.parts:
            if isinstance(part, TextPart):
                chunks.append(part.text)
            elif isinstance(part, FunctionCall):
                chunks.append(part.name)
                chunks.append(json.dumps(part.args, sort_keys=True, default=str))
            elif isinstance(part, FunctionResponse):
                chunks.append(json.dumps(part.result, sort_keys=True, default=str))
    return "".join(chunks)


def estimate_request_tokens(request: ChatRequest) -> int:
    """Estimate prompt tokens for every text-bearing part of *request*."""
    return estimate_tokens(_request_text(request))


async def count_request_tokens(
    adapter: Provider, provider: ProviderId, request: ChatRequest
) -> int:
    """Count prompt tokens, natively when possible, else by estimate."""
    if supports_native_token_counting(provider):
        try:
            return await adapter.count_tokens(request)
        except UnsupportedOperationError:
            logger.debug("Native token counting unavailable for %s", provider.value)
    return estimate_request_tokens(request)
