"""Typed progress events emitted by the rolebatch core.

The executors and the retrier publish events on an EventBus instead of
deciding how progress is reported. The host application subscribes whatever
it needs; `EventLogSubscriber` renders events as structured log lines.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Union

from rolebatch.utils.logger import log_error, log_info, log_warn

logger = logging.getLogger("rolebatch.events")


@dataclass(frozen=True)
class ChunkStarted:
    chunk: int
    total_chunks: int
    size: int
    group_id: Optional[str] = None


@dataclass(frozen=True)
class ChunkCompleted:
    chunk: int
    total_chunks: int
    success_count: int
    failed_count: int
    group_id: Optional[str] = None


@dataclass(frozen=True)
class ChunkFailed:
    chunk: int
    total_chunks: int
    size: int
    error: str
    group_id: Optional[str] = None


@dataclass(frozen=True)
class RateLimited:
    attempt: int
    backoff_ms: int
    error: str


@dataclass(frozen=True)
class RetryExhausted:
    attempts: int
    item_count: int
    error: str


Event = Union[ChunkStarted, ChunkCompleted, ChunkFailed, RateLimited, RetryExhausted]
Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out of core events to subscribers."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register `callback`; returns a function that unsubscribes it."""

        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001
                # A broken subscriber must not abort a mutation run.
                logger.exception("Event subscriber failed on %s", type(event).__name__)


class EventLogSubscriber:
    """Render core events through the structured run logger."""

    def __call__(self, event: Event) -> None:
        name = type(event).__name__
        fields = asdict(event)
        group_id = fields.pop("group_id", None)

        if isinstance(event, (ChunkFailed, RetryExhausted)):
            log_error(name, group_id=group_id, **fields)
        elif isinstance(event, RateLimited):
            log_warn(name, group_id=group_id, **fields)
        else:
            log_info(name, group_id=group_id, **fields)
