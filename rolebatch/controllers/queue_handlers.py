"""Default batch handlers for the priority queue.

Tag grants and revokes go to the bulk mutation service through the retrier;
principal fetches go to the lookup service. A handler receives the whole
batch sliced off by the drain loop and returns one result per item.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from rolebatch.adapters.membership_service import BulkMutationService, MembershipLookupService
from rolebatch.controllers.priority_queue import BatchHandler
from rolebatch.core.retry import BackoffRetrier
from rolebatch.models.mutation import Direction, MutationRequest, OperationKind, OperationResult, QueueKey

logger = logging.getLogger("rolebatch.queue")

DEFAULT_QUEUE_REASON = "Queued tag operation"


def make_mutation_handler(
    mutation: BulkMutationService,
    retrier: BackoffRetrier,
    kind: OperationKind,
    reason: str = DEFAULT_QUEUE_REASON,
) -> BatchHandler:
    """Build the handler for `tagGrant` or `tagRevoke` batches."""

    if kind is OperationKind.TAG_GRANT:
        call = mutation.bulk_grant
        direction = Direction.GRANT
    elif kind is OperationKind.TAG_REVOKE:
        call = mutation.bulk_revoke
        direction = Direction.REVOKE
    else:
        raise ValueError(f"Not a mutation kind: {kind.value}")

    async def handle(key: QueueKey, batch: List[MutationRequest]) -> List[OperationResult]:
        missing = [r for r in batch if not r.tag]
        if missing:
            raise ValueError(f"{len(missing)} queued {kind.value} item(s) have no tag")
        mismatched = [r for r in batch if r.direction is not None and Direction.parse(r.direction) is not direction]
        if mismatched:
            raise ValueError(f"{len(mismatched)} queued {kind.value} item(s) carry a different direction")

        pairs = [(r.principal_id, r.tag) for r in batch]
        return await retrier.retry(
            lambda: call(key.group_id, pairs, reason),
            [r.principal_id for r in batch],
        )

    return handle


def make_fetch_handler(lookup: MembershipLookupService) -> BatchHandler:
    """Build the handler for `principalFetch` batches."""

    async def _fetch_one(group_id: str, request: MutationRequest) -> OperationResult:
        try:
            await lookup.fetch_principal(group_id, request.principal_id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to fetch principal %s: %s", request.principal_id, exc)
            return OperationResult(principal_id=request.principal_id, success=False, error=str(exc))
        return OperationResult(principal_id=request.principal_id, success=True)

    async def handle(key: QueueKey, batch: List[MutationRequest]) -> List[OperationResult]:
        return list(await asyncio.gather(*[_fetch_one(key.group_id, r) for r in batch]))

    return handle


def build_default_handlers(
    lookup: MembershipLookupService,
    mutation: BulkMutationService,
    retrier: BackoffRetrier,
    reason: str = DEFAULT_QUEUE_REASON,
) -> Dict[OperationKind, BatchHandler]:
    return {
        OperationKind.TAG_GRANT: make_mutation_handler(mutation, retrier, OperationKind.TAG_GRANT, reason),
        OperationKind.TAG_REVOKE: make_mutation_handler(mutation, retrier, OperationKind.TAG_REVOKE, reason),
        OperationKind.PRINCIPAL_FETCH: make_fetch_handler(lookup),
    }
