"""Priority batch queue for single-item tag operations.

Each QueueKey (operation kind + group) owns an ordered list and at most one
drain task. Enqueueing returns immediately; draining is paced:

- items are ordered by (priority desc, enqueue time asc);
- the drain task slices off `batch_size` items for the key's kind, hands them
  to that kind's handler, and pauses `batch_delay` before the next slice;
- items already sliced into a batch are not preempted by later arrivals;
- the task exits when the list is empty, so the next enqueue starts a new one.

The queue never rejects for capacity.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from rolebatch.config.settings import BatchSettings
from rolebatch.models.mutation import MutationRequest, OperationKind, OperationResult, QueueKey
from rolebatch.utils.delay import delay

logger = logging.getLogger("rolebatch.queue")

BatchHandler = Callable[[QueueKey, List[MutationRequest]], Awaitable[List[OperationResult]]]
PriorityFunction = Callable[[str], Union[int, Awaitable[int]]]


@dataclass
class _KeyState:
    items: List[MutationRequest]
    task: Optional["asyncio.Task[None]"] = None
    processed: int = 0
    failed: int = 0

    @property
    def draining(self) -> bool:
        return self.task is not None and not self.task.done()


class PriorityBatchQueue:
    """Registry of per-key priority queues with paced drain loops.

    Owned by the application's composition root; there is no module-level
    instance.
    """

    def __init__(
        self,
        handlers: Mapping[OperationKind, BatchHandler],
        settings: Optional[BatchSettings] = None,
        priority_fn: Optional[PriorityFunction] = None,
    ) -> None:
        self.handlers: Dict[OperationKind, BatchHandler] = dict(handlers)
        self.settings = settings or BatchSettings()
        self.priority_fn = priority_fn
        self._keys: Dict[QueueKey, _KeyState] = {}

    async def enqueue(
        self,
        key: QueueKey,
        item: MutationRequest,
        kind: Optional[OperationKind] = None,
    ) -> bool:
        """Queue `item` under `key` and make sure a drain task is running.

        `kind`, when given, must match `key.kind`. Always returns True.
        """

        if kind is not None and OperationKind(kind) is not OperationKind(key.kind):
            raise ValueError(f"Operation kind {OperationKind(kind).value} does not match queue {key}")
        kind = OperationKind(key.kind)
        if kind not in self.handlers:
            raise ValueError(f"No batch handler registered for operation kind: {kind.value}")

        priority = item.priority or await self._resolve_priority(item)
        queued = replace(item, priority=priority, enqueued_at=time.monotonic())

        state = self._keys.setdefault(key, _KeyState(items=[]))
        state.items.append(queued)
        # list.sort is stable: equal (priority, time) keeps enqueue order.
        state.items.sort(key=lambda r: (-r.priority, r.enqueued_at))

        logger.debug(
            "Queued %s for %s (priority: %s, queue size: %s)",
            kind.value,
            queued.principal_id,
            priority,
            len(state.items),
        )

        if not state.draining:
            state.task = asyncio.create_task(self._drain(key, kind, state))

        return True

    async def _resolve_priority(self, item: MutationRequest) -> int:
        if self.priority_fn is None:
            return 0
        try:
            value: Any = self.priority_fn(item.priority_subject)
            if inspect.isawaitable(value):
                value = await value
            return int(value or 0)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to get priority for %s: %s", item.priority_subject, exc)
            return 0

    async def _drain(self, key: QueueKey, kind: OperationKind, state: _KeyState) -> None:
        batch_size = self.settings.batch_size_for(kind)
        batch_delay = self.settings.batch_delay_for(kind)
        handler = self.handlers[kind]

        try:
            while state.items:
                batch = state.items[:batch_size]
                del state.items[:batch_size]

                try:
                    results = await handler(key, batch)
                except Exception as exc:  # noqa: BLE001
                    logger.error("Error processing %s batch for %s: %s", kind.value, key, exc)
                    state.processed += len(batch)
                    state.failed += len(batch)
                else:
                    failures = sum(1 for r in results or [] if not r.success)
                    state.processed += len(batch)
                    state.failed += failures
                    if failures:
                        logger.warning("Failed to process %s of %s %s operations", failures, len(batch), kind.value)
                    else:
                        logger.debug("Processed %s %s operations", len(batch), kind.value)

                if state.items:
                    await delay(batch_delay)
        finally:
            state.task = None

    async def wait_idle(self, key: Optional[QueueKey] = None) -> None:
        """Wait until `key` (or every key) has no active drain task."""

        while True:
            keys = [key] if key is not None else list(self._keys)
            tasks = [self._keys[k].task for k in keys if k in self._keys and self._keys[k].task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks)

    def is_draining(self, key: QueueKey) -> bool:
        state = self._keys.get(key)
        return bool(state and state.draining)

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-key counters keyed by `str(QueueKey)`."""

        return {
            str(key): {
                "queued": len(state.items),
                "processing": state.draining,
                "processed": state.processed,
                "failed": state.failed,
            }
            for key, state in self._keys.items()
        }

    def clear(self) -> None:
        """Drop every queued item. In-flight batches still run to completion."""

        for state in self._keys.values():
            state.items.clear()
