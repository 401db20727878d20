"""Service interfaces consumed by the rolebatch core.

This module defines the contract that every membership backend must
implement. The core never talks to a transport directly; it only knows how to:
1. Look up one principal and its current tags
2. Grant a tag to many principals
3. Revoke a tag from many principals
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from rolebatch.models.mutation import OperationResult, Principal

# (principal_id, tag)
MutationPair = Tuple[str, str]


class PrincipalNotFound(LookupError):
    """Raised by a lookup service when a principal does not exist in a group."""

    def __init__(self, group_id: str, principal_id: str) -> None:
        super().__init__(f"Principal {principal_id} not found in group {group_id}")
        self.group_id = group_id
        self.principal_id = principal_id


class MembershipLookupService(ABC):
    """Read side of the remote membership service."""

    @abstractmethod
    async def fetch_principal(self, group_id: str, principal_id: str) -> Principal:
        """Return the principal with its current tags.

        Raises:
            PrincipalNotFound: If the principal is not a member of the group.
            Exception: Any transport error. Callers treat it like not-found.
        """
        pass


class BulkMutationService(ABC):
    """Write side of the remote membership service.

    Implementations return one OperationResult per pair. Individual failures
    should be reported in the result rather than raised; a raised exception
    means the whole call failed. Rate limiting may surface either way.
    """

    @abstractmethod
    async def bulk_grant(
        self, group_id: str, pairs: Sequence[MutationPair], reason: str
    ) -> List[OperationResult]:
        """Add each pair's tag to its principal."""
        pass

    @abstractmethod
    async def bulk_revoke(
        self, group_id: str, pairs: Sequence[MutationPair], reason: str
    ) -> List[OperationResult]:
        """Remove each pair's tag from its principal."""
        pass
