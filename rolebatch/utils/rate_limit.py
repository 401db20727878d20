"""Rate-limit signal detection.

The retry logic never inspects errors itself; it asks a predicate. The default
predicate matches a marker substring in free-text errors and also recognizes
HTTP 429 responses raised by httpx.
"""

from __future__ import annotations

from typing import Any, Callable

import httpx

DEFAULT_RATE_LIMIT_MARKER = "rate limit"

RateLimitPredicate = Callable[[Any], bool]


def _error_text(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    return str(error)


def make_rate_limit_predicate(marker: str = DEFAULT_RATE_LIMIT_MARKER) -> RateLimitPredicate:
    """Build an `is_rate_limited(error) -> bool` predicate for `marker`.

    `error` may be an error string (from an OperationResult) or an exception.
    """

    needle = marker.lower()

    def is_rate_limited(error: Any) -> bool:
        if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
            return True
        text = _error_text(error)
        return bool(text) and needle in text.lower()

    return is_rate_limited


is_rate_limited = make_rate_limit_predicate()
