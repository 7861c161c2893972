"""Small HTTP-related constants shared across Parlance.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Transient status codes retried by adapters. 429 is deliberately absent:
# quota exhaustion is routed to the fallback policy instead.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 500, 502, 503, 504})

QUOTA_STATUS_CODE = 429
