"""Bounded retry with backoff for bulk mutation calls.

Rate-limit signals back off by `rate_limit_backoff_ms * attempt`; any other
raised error backs off by `retry_delay_ms * attempt`. Once attempts run out
the caller still gets a result list (one failure per expected principal), so
aggregation code can run unconditionally.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from rolebatch.config.settings import BatchSettings
from rolebatch.core.events import EventBus, RateLimited, RetryExhausted
from rolebatch.models.mutation import OperationResult
from rolebatch.utils.delay import delay
from rolebatch.utils.rate_limit import RateLimitPredicate, make_rate_limit_predicate

logger = logging.getLogger("rolebatch.retry")

Operation = Callable[[], Awaitable[List[OperationResult]]]


class BackoffRetrier:
    """Wrap a bulk operation with bounded, rate-limit-aware retries."""

    def __init__(
        self,
        settings: Optional[BatchSettings] = None,
        is_rate_limited: Optional[RateLimitPredicate] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.settings = settings or BatchSettings()
        self.is_rate_limited = is_rate_limited or make_rate_limit_predicate(self.settings.rate_limit_marker)
        self.events = events or EventBus()

    async def retry(
        self,
        operation: Operation,
        expected_ids: Sequence[Optional[str]],
        max_attempts: Optional[int] = None,
    ) -> List[OperationResult]:
        """Run `operation` until it returns results free of rate-limit signals.

        Args:
            operation: Zero-argument coroutine function returning results.
            expected_ids: Principal ids the operation covers; used to build
                the synthetic failures when every attempt fails.
            max_attempts: Overrides `settings.max_retries`; must be at least 1.
        """

        attempts = self.settings.max_retries if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")
        last_error: Optional[str] = None

        for attempt in range(1, attempts + 1):
            is_last = attempt == attempts
            try:
                results = list(await operation())
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or type(exc).__name__
                if self.is_rate_limited(exc):
                    backoff_ms = self.settings.rate_limit_backoff_ms * attempt
                    logger.warning(
                        "Rate limit error on attempt %s/%s, backing off for %sms",
                        attempt,
                        attempts,
                        backoff_ms,
                    )
                    self.events.emit(RateLimited(attempt=attempt, backoff_ms=backoff_ms, error=last_error))
                else:
                    backoff_ms = self.settings.retry_delay_ms * attempt
                    logger.warning(
                        "Operation failed on attempt %s/%s: %s",
                        attempt,
                        attempts,
                        last_error,
                    )
                if not is_last:
                    await delay(backoff_ms)
                continue

            limited = next((r for r in results if r.error and self.is_rate_limited(r.error)), None)
            if limited is None:
                return results

            last_error = limited.error
            backoff_ms = self.settings.rate_limit_backoff_ms * attempt
            logger.warning(
                "Rate limited on attempt %s/%s, backing off for %sms",
                attempt,
                attempts,
                backoff_ms,
            )
            self.events.emit(RateLimited(attempt=attempt, backoff_ms=backoff_ms, error=last_error or ""))
            if not is_last:
                await delay(backoff_ms)

        error = last_error or "Unknown error"
        logger.error("Operation failed after %s attempts: %s", attempts, error)
        self.events.emit(RetryExhausted(attempts=attempts, item_count=len(expected_ids), error=error))
        return [OperationResult(principal_id=pid, success=False, error=error) for pid in expected_ids]
