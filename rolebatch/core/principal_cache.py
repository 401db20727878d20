"""Per-run memoization of principal lookups."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from rolebatch.adapters.membership_service import MembershipLookupService
from rolebatch.models.mutation import Principal

logger = logging.getLogger("rolebatch.cache")


class PrincipalCache:
    """Memoize `fetch_principal` for the lifetime of one executor run.

    Failed lookups are cached as None and never retried within the run.
    """

    def __init__(self, lookup: MembershipLookupService) -> None:
        self.lookup = lookup
        self._entries: Dict[Tuple[str, str], Optional[Principal]] = {}

    async def get(self, group_id: str, principal_id: str) -> Optional[Principal]:
        key = (group_id, principal_id)
        if key in self._entries:
            return self._entries[key]

        try:
            principal: Optional[Principal] = await self.lookup.fetch_principal(group_id, principal_id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to fetch principal %s in group %s: %s", principal_id, group_id, exc)
            principal = None

        self._entries[key] = principal
        return principal

    def __len__(self) -> int:
        return len(self._entries)
