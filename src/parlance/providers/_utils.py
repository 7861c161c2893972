"""Shared utilities for provider implementations."""

from __future__ import annotations

import json
import logging
from typing import Any
import uuid

logger = logging.getLogger(__name__)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode function-call arguments that arrive as a JSON string.

    Malformed or non-object payloads decode to an empty mapping; the model's
    call is still recorded so the tool can report the bad input.
    """
    if isinstance(raw, dict):
        return dict(raw)
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Discarding malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def new_call_id(prefix: str = "call") -> str:
    """Return a fresh id for a function call the provider did not label."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def dump_tool_result(result: dict[str, Any]) -> str:
    """Serialize a tool result mapping for providers that take string content."""
    return json.dumps(result, ensure_ascii=False, default=str)
