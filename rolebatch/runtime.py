"""Composition root for rolebatch.

`BatchRuntime` wires one retrier, both executors and the priority queue
registry around a lookup service and a mutation service. Construct it once in
the host application and pass it to whatever produces mutation requests.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rolebatch.adapters.membership_service import BulkMutationService, MembershipLookupService
from rolebatch.config.settings import BatchSettings
from rolebatch.controllers.batch_executor import BatchMutationExecutor
from rolebatch.controllers.chunked_executor import ChunkedBulkExecutor
from rolebatch.controllers.priority_queue import PriorityBatchQueue, PriorityFunction
from rolebatch.controllers.queue_handlers import build_default_handlers
from rolebatch.core.events import EventBus, EventLogSubscriber
from rolebatch.core.retry import BackoffRetrier
from rolebatch.models.mutation import Direction, MutationRequest, OperationKind, QueueKey, RunSummary
from rolebatch.utils.rate_limit import RateLimitPredicate


class BatchRuntime:
    """Owns the shared pieces: settings, events, retrier, executors, queue."""

    def __init__(
        self,
        lookup: MembershipLookupService,
        mutation: BulkMutationService,
        settings: Optional[BatchSettings] = None,
        priority_fn: Optional[PriorityFunction] = None,
        is_rate_limited: Optional[RateLimitPredicate] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.settings = settings or BatchSettings()
        self.events = events or EventBus()
        self.retrier = BackoffRetrier(self.settings, is_rate_limited=is_rate_limited, events=self.events)
        self.batch_executor = BatchMutationExecutor(lookup, mutation, retrier=self.retrier, settings=self.settings)
        self.chunked_executor = ChunkedBulkExecutor(self.batch_executor, settings=self.settings, events=self.events)
        self.queue = PriorityBatchQueue(
            build_default_handlers(lookup, mutation, self.retrier),
            settings=self.settings,
            priority_fn=priority_fn,
        )

    def attach_logging(self):
        """Log every core event; returns the unsubscribe function."""

        return self.events.subscribe(EventLogSubscriber())

    async def execute_role_operation(
        self,
        group_id: str,
        principal_ids: Sequence[str],
        tag: str,
        direction: Any,
        reason: str = "Scheduled role operation",
    ) -> RunSummary:
        return await self.chunked_executor.execute_role_operation(group_id, principal_ids, tag, direction, reason)

    async def grant_tag(
        self,
        group_id: str,
        principal_id: str,
        tag: str,
        priority: int = 0,
        caller_id: Optional[str] = None,
    ) -> bool:
        """Queue a single grant; returns as soon as it is queued."""

        return await self._enqueue_mutation(OperationKind.TAG_GRANT, group_id, principal_id, tag, priority, caller_id)

    async def revoke_tag(
        self,
        group_id: str,
        principal_id: str,
        tag: str,
        priority: int = 0,
        caller_id: Optional[str] = None,
    ) -> bool:
        return await self._enqueue_mutation(OperationKind.TAG_REVOKE, group_id, principal_id, tag, priority, caller_id)

    async def fetch_principal(self, group_id: str, principal_id: str, priority: int = 0) -> bool:
        key = QueueKey(OperationKind.PRINCIPAL_FETCH, group_id)
        return await self.queue.enqueue(key, MutationRequest(principal_id=principal_id, priority=priority))

    async def _enqueue_mutation(
        self,
        kind: OperationKind,
        group_id: str,
        principal_id: str,
        tag: str,
        priority: int,
        caller_id: Optional[str],
    ) -> bool:
        if not tag:
            raise ValueError("tag is required")
        direction = Direction.GRANT if kind is OperationKind.TAG_GRANT else Direction.REVOKE
        request = MutationRequest(
            principal_id=principal_id,
            tag=tag,
            direction=direction,
            priority=priority,
            caller_id=caller_id,
        )
        return await self.queue.enqueue(QueueKey(kind, group_id), request, kind)

    async def wait_idle(self) -> None:
        await self.queue.wait_idle()

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.queue.get_stats()
