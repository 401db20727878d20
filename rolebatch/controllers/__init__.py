"""Controllers package for rolebatch."""

from rolebatch.controllers.batch_executor import BatchMutationExecutor
from rolebatch.controllers.chunked_executor import ChunkedBulkExecutor
from rolebatch.controllers.priority_queue import PriorityBatchQueue
from rolebatch.controllers.queue_handlers import build_default_handlers

__all__ = [
    "BatchMutationExecutor",
    "ChunkedBulkExecutor",
    "PriorityBatchQueue",
    "build_default_handlers",
]
