"""Chunked bulk executor for very large principal lists.

Repeated ids are dropped first. Lists of up to `large_operation_threshold`
unique ids go straight to BatchMutationExecutor. Longer lists are cut into
`chunk_size` chunks processed one after another:

- each chunk is an isolated unit; if it raises, the whole chunk is counted as
  failed, one aggregated error is recorded, and the run backs off and moves
  on to the next chunk;
- between chunks the executor pauses `min(2000, 500 + len(chunk) * 2)` ms;
- totals from every chunk are folded into one RunSummary whose `processed`
  is `success_count + failed_count` (no-ops inside chunks are not counted).
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from rolebatch.config.settings import BatchSettings
from rolebatch.controllers.batch_executor import BatchMutationExecutor, dedupe_ids, direction_label
from rolebatch.core.events import ChunkCompleted, ChunkFailed, ChunkStarted, EventBus
from rolebatch.models.mutation import RunError, RunSummary
from rolebatch.utils.delay import delay
from rolebatch.utils.logger import generate_run_id, log_info

logger = logging.getLogger("rolebatch.chunked")


class ChunkedBulkExecutor:
    """Entry point for administrative whole-list tag operations."""

    def __init__(
        self,
        batch_executor: BatchMutationExecutor,
        settings: Optional[BatchSettings] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.batch_executor = batch_executor
        self.settings = settings or batch_executor.settings
        self.events = events or EventBus()

    async def execute_role_operation(
        self,
        group_id: str,
        principal_ids: Sequence[str],
        tag: str,
        direction: Any,
        reason: str = "Scheduled role operation",
    ) -> RunSummary:
        label = direction_label(direction)
        if not tag:
            raise ValueError("tag is required")
        total = len(principal_ids)
        unique_ids = dedupe_ids(principal_ids)
        run_id = generate_run_id()

        log_info(
            f"Starting {label} of {tag} for {total} principals",
            group_id=group_id,
            run_id=run_id,
        )

        if len(unique_ids) <= self.settings.large_operation_threshold:
            summary = await self.batch_executor.execute(group_id, principal_ids, tag, direction, reason)
        else:
            summary = await self._execute_chunked(group_id, unique_ids, tag, direction, reason, total)

        log_info(
            f"Finished {label} of {tag}",
            group_id=group_id,
            run_id=run_id,
            **summary.to_dict(),
        )
        return summary

    async def _execute_chunked(
        self,
        group_id: str,
        principal_ids: List[str],
        tag: str,
        direction: Any,
        reason: str,
        total_requested: int,
    ) -> RunSummary:
        chunk_size = self.settings.chunk_size
        total = len(principal_ids)
        total_chunks = (total + chunk_size - 1) // chunk_size
        summary = RunSummary(total_requested=total_requested)

        logger.info("Large operation detected: processing %s principals in %s chunks", total, total_chunks)

        for start in range(0, total, chunk_size):
            chunk = principal_ids[start : start + chunk_size]
            chunk_number = start // chunk_size + 1
            has_more = start + chunk_size < total

            self.events.emit(
                ChunkStarted(chunk=chunk_number, total_chunks=total_chunks, size=len(chunk), group_id=group_id)
            )

            try:
                result = await self.batch_executor.execute(group_id, chunk, tag, direction, reason)
            except Exception as exc:  # noqa: BLE001
                error = str(exc) or type(exc).__name__
                logger.error("Error processing chunk %s/%s: %s", chunk_number, total_chunks, error)
                summary.failed_count += len(chunk)
                summary.add_errors(
                    [RunError(error=error, chunk=chunk_number, principal_count=len(chunk))],
                    self.settings.max_error_entries,
                )
                self.events.emit(
                    ChunkFailed(
                        chunk=chunk_number,
                        total_chunks=total_chunks,
                        size=len(chunk),
                        error=error,
                        group_id=group_id,
                    )
                )
                await delay(self.settings.rate_limit_backoff_ms)
                continue

            summary.success_count += result.success_count
            summary.failed_count += result.failed_count
            summary.add_errors(result.errors, self.settings.max_error_entries)

            self.events.emit(
                ChunkCompleted(
                    chunk=chunk_number,
                    total_chunks=total_chunks,
                    success_count=result.success_count,
                    failed_count=result.failed_count,
                    group_id=group_id,
                )
            )

            if has_more:
                await delay(self.settings.chunk_delay_ms(len(chunk)))

        summary.processed = summary.success_count + summary.failed_count
        return summary
