"""Configuration package for rolebatch."""

from rolebatch.config.batch_limits import (
    CHUNK_SIZE,
    LARGE_OPERATION_THRESHOLD,
    MAX_ERROR_ENTRIES,
    MAX_RETRIES,
    RATE_LIMIT_BACKOFF_MS,
    RETRY_DELAY_MS,
)
from rolebatch.config.settings import BatchSettings, load_settings

__all__ = [
    "BatchSettings",
    "load_settings",
    "CHUNK_SIZE",
    "LARGE_OPERATION_THRESHOLD",
    "MAX_ERROR_ENTRIES",
    "MAX_RETRIES",
    "RATE_LIMIT_BACKOFF_MS",
    "RETRY_DELAY_MS",
]
