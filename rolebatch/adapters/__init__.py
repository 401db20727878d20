"""Adapters package for rolebatch.

This package holds the service interfaces the core consumes, giving each
membership backend a standard way to expose lookups and bulk mutations.
"""

from rolebatch.adapters.membership_service import (
    BulkMutationService,
    MembershipLookupService,
    MutationPair,
    PrincipalNotFound,
)

__all__ = [
    "BulkMutationService",
    "MembershipLookupService",
    "MutationPair",
    "PrincipalNotFound",
]
