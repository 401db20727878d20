"""Batch mutation executor for rolebatch.

Applies a tag change to a list of principals in a single run. The direction
is either the same for everyone or given per principal as a mapping.

1. **Resolve** principals in small concurrent sub-batches through a fresh
   PrincipalCache, pausing between sub-batches. Unresolvable principals are
   skipped.
2. **Filter** no-ops: granting a tag the principal already has, or revoking
   one it lacks.
3. **Split** the remaining work into a grant list and a revoke list.
4. **Dispatch** the grant list, then the revoke list, each as one bulk call
   wrapped in BackoffRetrier, with a pause in between.
5. **Aggregate** everything into a RunSummary with a bounded error list.

Remote failures never raise out of `execute`; they are folded into the
summary so the caller can report partial success.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from rolebatch.adapters.membership_service import (
    BulkMutationService,
    MembershipLookupService,
    MutationPair,
)
from rolebatch.config.settings import BatchSettings
from rolebatch.core.principal_cache import PrincipalCache
from rolebatch.core.retry import BackoffRetrier
from rolebatch.models.mutation import Direction, Principal, RunError, RunSummary
from rolebatch.utils.delay import delay

logger = logging.getLogger("rolebatch.executor")

PROGRESS_LOG_EVERY = 100


def dedupe_ids(principal_ids: Sequence[str]) -> List[str]:
    """Drop repeated ids, keeping first-seen order."""

    return list(dict.fromkeys(str(pid) for pid in principal_ids))


def direction_lookup(direction: Any) -> Callable[[str], Optional[Direction]]:
    """Return a principal_id -> Direction function.

    `direction` is either one direction for every principal, or a mapping of
    principal id to direction. Principals missing from the mapping are skipped.
    """

    if isinstance(direction, Mapping):
        per_principal = {str(pid): Direction.parse(d) for pid, d in direction.items()}
        return per_principal.get

    single = Direction.parse(direction)
    return lambda _pid: single


def direction_label(direction: Any) -> str:
    if isinstance(direction, Mapping):
        return "mixed"
    return Direction.parse(direction).value


class BatchMutationExecutor:
    """Resolve, filter, split and dispatch one tag change for a principal list."""

    def __init__(
        self,
        lookup: MembershipLookupService,
        mutation: BulkMutationService,
        retrier: Optional[BackoffRetrier] = None,
        settings: Optional[BatchSettings] = None,
    ) -> None:
        self.lookup = lookup
        self.mutation = mutation
        self.settings = settings or (retrier.settings if retrier else BatchSettings())
        self.retrier = retrier or BackoffRetrier(self.settings)

    async def execute(
        self,
        group_id: str,
        principal_ids: Sequence[str],
        tag: str,
        direction: Any,
        reason: str = "Bulk tag operation",
    ) -> RunSummary:
        direction_for = direction_lookup(direction)
        if not tag:
            raise ValueError("tag is required")

        total = len(principal_ids)
        grants, revokes = await self._prepare(group_id, dedupe_ids(principal_ids), tag, direction_for)

        if not grants and not revokes:
            logger.info(
                "No operations needed in group %s: all %s principals already in the desired state for %s",
                group_id,
                total,
                tag,
            )
            return RunSummary(total_requested=total, processed=total)

        summary = RunSummary(total_requested=total, processed=total)

        if grants:
            await self._dispatch(summary, grants, self.mutation.bulk_grant, group_id, reason)

        if grants and revokes:
            await delay(self.settings.mutation_batch_delay_ms * 2)

        if revokes:
            await self._dispatch(summary, revokes, self.mutation.bulk_revoke, group_id, reason)

        logger.info(
            "Finished %s of %s in group %s: %s succeeded, %s failed",
            direction_label(direction),
            tag,
            group_id,
            summary.success_count,
            summary.failed_count,
        )
        return summary

    async def _prepare(
        self,
        group_id: str,
        principal_ids: List[str],
        tag: str,
        direction_for: Callable[[str], Optional[Direction]],
    ) -> Tuple[List[MutationPair], List[MutationPair]]:
        """Resolve principals and return the (grant, revoke) pairs still needed."""

        cache = PrincipalCache(self.lookup)
        grants: List[MutationPair] = []
        revokes: List[MutationPair] = []
        fetch_size = self.settings.fetch_batch_size
        prepared = 0

        for start in range(0, len(principal_ids), fetch_size):
            fetch_batch = principal_ids[start : start + fetch_size]
            principals = await asyncio.gather(*[cache.get(group_id, pid) for pid in fetch_batch])

            for pid, principal in zip(fetch_batch, principals):
                needed = self._needed_direction(principal, tag, direction_for(pid))
                if needed is Direction.GRANT:
                    grants.append((pid, tag))
                elif needed is Direction.REVOKE:
                    revokes.append((pid, tag))

            prepared += len(fetch_batch)
            if start + fetch_size < len(principal_ids):
                await delay(self.settings.fetch_delay_ms)

            if prepared % PROGRESS_LOG_EVERY == 0:
                logger.debug(
                    "Prepared %s/%s principals, %s operations needed",
                    prepared,
                    len(principal_ids),
                    len(grants) + len(revokes),
                )

        return grants, revokes

    @staticmethod
    def _needed_direction(
        principal: Optional[Principal], tag: str, direction: Optional[Direction]
    ) -> Optional[Direction]:
        if principal is None or direction is None:
            return None
        has_tag = principal.has_tag(tag)
        if direction is Direction.GRANT and not has_tag:
            return Direction.GRANT
        if direction is Direction.REVOKE and has_tag:
            return Direction.REVOKE
        return None

    async def _dispatch(
        self,
        summary: RunSummary,
        pairs: List[MutationPair],
        call,
        group_id: str,
        reason: str,
    ) -> None:
        results = await self.retrier.retry(
            lambda: call(group_id, pairs, reason),
            [pid for pid, _ in pairs],
        )

        failures = [r for r in results if not r.success]
        summary.success_count += len(results) - len(failures)
        summary.failed_count += len(failures)
        summary.add_errors(
            [RunError(error=r.error or "Unknown error", principal_id=r.principal_id) for r in failures],
            self.settings.max_error_entries,
        )
