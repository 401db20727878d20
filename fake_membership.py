"""In-memory membership backend shared by the test modules."""

from typing import Dict, Iterable, List, Optional, Sequence
from unittest.mock import AsyncMock

from rolebatch.adapters.membership_service import (
    BulkMutationService,
    MembershipLookupService,
    MutationPair,
    PrincipalNotFound,
)
from rolebatch.config.settings import BatchSettings
from rolebatch.models.mutation import OperationResult, Principal


class FakeMembership(MembershipLookupService, BulkMutationService):
    """Principals and their tags held in a dict.

    The three entry points delegate to AsyncMocks (`lookup_mock`,
    `grant_mock`, `revoke_mock`) so tests can inspect calls or swap in
    side effects. `calls` records the dispatch order.
    """

    def __init__(self, tags: Optional[Dict[str, Iterable[str]]] = None, missing: Iterable[str] = ()) -> None:
        self.tags: Dict[str, set] = {pid: set(t) for pid, t in (tags or {}).items()}
        self.missing = set(missing)
        self.calls: List[str] = []
        self.lookup_mock = AsyncMock(side_effect=self._lookup)
        self.grant_mock = AsyncMock(side_effect=self._grant)
        self.revoke_mock = AsyncMock(side_effect=self._revoke)

    async def fetch_principal(self, group_id: str, principal_id: str) -> Principal:
        return await self.lookup_mock(group_id, principal_id)

    async def bulk_grant(self, group_id: str, pairs: Sequence[MutationPair], reason: str) -> List[OperationResult]:
        self.calls.append("grant")
        return await self.grant_mock(group_id, list(pairs), reason)

    async def bulk_revoke(self, group_id: str, pairs: Sequence[MutationPair], reason: str) -> List[OperationResult]:
        self.calls.append("revoke")
        return await self.revoke_mock(group_id, list(pairs), reason)

    async def _lookup(self, group_id: str, principal_id: str) -> Principal:
        if principal_id in self.missing:
            raise PrincipalNotFound(group_id, principal_id)
        return Principal(id=principal_id, tags=frozenset(self.tags.get(principal_id, ())))

    async def _grant(self, group_id: str, pairs: List[MutationPair], reason: str) -> List[OperationResult]:
        for pid, tag in pairs:
            self.tags.setdefault(pid, set()).add(tag)
        return [OperationResult(pid, True) for pid, _ in pairs]

    async def _revoke(self, group_id: str, pairs: List[MutationPair], reason: str) -> List[OperationResult]:
        for pid, tag in pairs:
            self.tags.setdefault(pid, set()).discard(tag)
        return [OperationResult(pid, True) for pid, _ in pairs]


def fast_settings(**overrides):
    """Settings with every pacing delay at zero."""

    values = dict(
        batch_delays_ms={"tagGrant": 0, "tagRevoke": 0, "principalFetch": 0},
        retry_delay_ms=0,
        rate_limit_backoff_ms=0,
        fetch_delay_ms=0,
        mutation_batch_delay_ms=0,
    )
    values.update(overrides)
    return BatchSettings(**values)
