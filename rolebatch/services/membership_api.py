"""Discord REST binding for the membership services.

This module provides the primitives the core consumes:
- One member fetch (current role ids)
- Bulk role add/remove, walked in small concurrent sub-batches

Per-member HTTP failures become result errors (`API_ERROR: <status>`,
`HTTP_ERROR: ...`); HTTP 429 carries a "rate limit" marker so the retrier
backs off instead of treating it as a generic failure.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from rolebatch.adapters.membership_service import (
    BulkMutationService,
    MembershipLookupService,
    MutationPair,
    PrincipalNotFound,
)
from rolebatch.models.mutation import OperationResult, Principal
from rolebatch.utils.delay import delay

DEFAULT_API_BASE_URL = "https://discord.com/api/v10"
MUTATION_SUB_BATCH_SIZE = 5
MUTATION_SUB_BATCH_DELAY_MS = 100


class DiscordMembershipAPI(MembershipLookupService, BulkMutationService):
    """Membership lookups and role mutations over the Discord HTTP API."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 20.0,
    ) -> None:
        self.token = token or os.getenv("DISCORD_BOT_TOKEN")
        self.base_url = (base_url or os.getenv("DISCORD_API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _auth_headers(self) -> Optional[Dict[str, str]]:
        if not self.token:
            return None
        return {"Authorization": f"Bot {self.token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch_principal(self, group_id: str, principal_id: str) -> Principal:
        headers = self._auth_headers()
        if not headers:
            raise RuntimeError("MISSING_DISCORD_BOT_TOKEN")

        url = f"{self.base_url}/guilds/{group_id}/members/{principal_id}"
        async with self._client() as client:
            resp = await client.get(url, headers=headers)

        if resp.status_code == 404:
            raise PrincipalNotFound(group_id, principal_id)
        resp.raise_for_status()

        payload: Dict[str, Any] = resp.json() or {}
        user = payload.get("user") or {}
        roles = payload.get("roles") or []
        return Principal(
            id=str(user.get("id") or principal_id),
            tags=frozenset(str(r) for r in roles),
        )

    async def bulk_grant(
        self, group_id: str, pairs: Sequence[MutationPair], reason: str
    ) -> List[OperationResult]:
        return await self._bulk_modify("PUT", group_id, pairs, reason)

    async def bulk_revoke(
        self, group_id: str, pairs: Sequence[MutationPair], reason: str
    ) -> List[OperationResult]:
        return await self._bulk_modify("DELETE", group_id, pairs, reason)

    async def _bulk_modify(
        self,
        method: str,
        group_id: str,
        pairs: Sequence[MutationPair],
        reason: str,
    ) -> List[OperationResult]:
        headers = self._auth_headers()
        if not headers:
            return [
                OperationResult(principal_id=pid, success=False, error="MISSING_DISCORD_BOT_TOKEN")
                for pid, _ in pairs
            ]

        if reason:
            headers["X-Audit-Log-Reason"] = quote(reason)

        results: List[OperationResult] = []
        async with self._client() as client:
            for start in range(0, len(pairs), MUTATION_SUB_BATCH_SIZE):
                sub_batch = pairs[start : start + MUTATION_SUB_BATCH_SIZE]
                results.extend(
                    await asyncio.gather(
                        *[self._modify_one(client, method, group_id, pid, tag, headers) for pid, tag in sub_batch]
                    )
                )
                if start + MUTATION_SUB_BATCH_SIZE < len(pairs):
                    await delay(MUTATION_SUB_BATCH_DELAY_MS)

        return results

    async def _modify_one(
        self,
        client: httpx.AsyncClient,
        method: str,
        group_id: str,
        principal_id: str,
        tag: str,
        headers: Dict[str, str],
    ) -> OperationResult:
        url = f"{self.base_url}/guilds/{group_id}/members/{principal_id}/roles/{tag}"
        try:
            resp = await client.request(method, url, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            if status_code == 429:
                error = "API_ERROR: 429 rate limit exceeded"
            else:
                error = f"API_ERROR: {status_code}"
            return OperationResult(principal_id=principal_id, success=False, error=error)
        except httpx.RequestError as exc:
            return OperationResult(principal_id=principal_id, success=False, error=f"HTTP_ERROR: {exc!r}")

        return OperationResult(principal_id=principal_id, success=True)
