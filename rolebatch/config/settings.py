"""Runtime settings for rolebatch.

`BatchSettings` holds every recognized option. `load_settings()` builds one
from `ROLEBATCH_*` environment variables (after loading a `.env` file).
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from rolebatch.config import batch_limits


def _kind_key(kind: Any) -> str:
    return str(getattr(kind, "value", kind))


class BatchSettings(BaseModel):
    """Pacing, retry and chunking options. Durations are milliseconds."""

    batch_sizes: Dict[str, int] = Field(default_factory=lambda: dict(batch_limits.QUEUE_BATCH_SIZES))
    batch_delays_ms: Dict[str, int] = Field(default_factory=lambda: dict(batch_limits.QUEUE_BATCH_DELAYS_MS))
    max_retries: int = Field(default=batch_limits.MAX_RETRIES, gt=0)
    retry_delay_ms: int = Field(default=batch_limits.RETRY_DELAY_MS, ge=0)
    rate_limit_backoff_ms: int = Field(default=batch_limits.RATE_LIMIT_BACKOFF_MS, ge=0)
    large_operation_threshold: int = Field(default=batch_limits.LARGE_OPERATION_THRESHOLD, gt=0)
    chunk_size: int = Field(default=batch_limits.CHUNK_SIZE, gt=0)
    fetch_batch_size: int = Field(default=batch_limits.FETCH_BATCH_SIZE, gt=0)
    fetch_delay_ms: int = Field(default=batch_limits.FETCH_DELAY_MS, ge=0)
    mutation_batch_delay_ms: int = Field(default=batch_limits.MUTATION_BATCH_DELAY_MS, ge=0)
    max_error_entries: int = Field(default=batch_limits.MAX_ERROR_ENTRIES, gt=0)
    rate_limit_marker: str = Field(default="rate limit", min_length=1)

    @field_validator("batch_sizes")
    @classmethod
    def _positive_sizes(cls, value: Dict[str, int]) -> Dict[str, int]:
        merged = dict(batch_limits.QUEUE_BATCH_SIZES)
        merged.update({_kind_key(k): v for k, v in value.items()})
        for kind, size in merged.items():
            if size <= 0:
                raise ValueError(f"batch size for {kind} must be positive, got {size}")
        return merged

    @field_validator("batch_delays_ms")
    @classmethod
    def _non_negative_delays(cls, value: Dict[str, int]) -> Dict[str, int]:
        merged = dict(batch_limits.QUEUE_BATCH_DELAYS_MS)
        merged.update({_kind_key(k): v for k, v in value.items()})
        for kind, delay_ms in merged.items():
            if delay_ms < 0:
                raise ValueError(f"batch delay for {kind} must not be negative, got {delay_ms}")
        return merged

    def batch_size_for(self, kind: Any) -> int:
        return self.batch_sizes.get(_kind_key(kind), batch_limits.MIN_QUEUE_BATCH_SIZE)

    def batch_delay_for(self, kind: Any) -> int:
        return self.batch_delays_ms.get(_kind_key(kind), 0)

    def chunk_delay_ms(self, chunk_len: int) -> int:
        """Adaptive pause after a chunk of `chunk_len` principals."""

        return min(
            batch_limits.CHUNK_DELAY_MAX_MS,
            batch_limits.CHUNK_DELAY_BASE_MS + chunk_len * batch_limits.CHUNK_DELAY_PER_PRINCIPAL_MS,
        )


_INT_ENV_OPTIONS = {
    "ROLEBATCH_MAX_RETRIES": "max_retries",
    "ROLEBATCH_RETRY_DELAY_MS": "retry_delay_ms",
    "ROLEBATCH_RATE_LIMIT_BACKOFF_MS": "rate_limit_backoff_ms",
    "ROLEBATCH_LARGE_OPERATION_THRESHOLD": "large_operation_threshold",
    "ROLEBATCH_CHUNK_SIZE": "chunk_size",
    "ROLEBATCH_FETCH_BATCH_SIZE": "fetch_batch_size",
    "ROLEBATCH_FETCH_DELAY_MS": "fetch_delay_ms",
    "ROLEBATCH_MUTATION_BATCH_DELAY_MS": "mutation_batch_delay_ms",
    "ROLEBATCH_MAX_ERROR_ENTRIES": "max_error_entries",
}

_JSON_ENV_OPTIONS = {
    "ROLEBATCH_BATCH_SIZES": "batch_sizes",
    "ROLEBATCH_BATCH_DELAYS_MS": "batch_delays_ms",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> BatchSettings:
    """Build settings from the environment.

    Per-kind options (`ROLEBATCH_BATCH_SIZES`, `ROLEBATCH_BATCH_DELAYS_MS`) are
    JSON objects merged over the defaults, e.g. '{"tagGrant": 3}'.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ

    values: Dict[str, Any] = {}
    for env_name, field_name in _INT_ENV_OPTIONS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip():
            values[field_name] = int(raw)

    for env_name, field_name in _JSON_ENV_OPTIONS.items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip():
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError(f"{env_name} must be a JSON object")
            values[field_name] = parsed

    marker = environ.get("ROLEBATCH_RATE_LIMIT_MARKER")
    if marker:
        values["rate_limit_marker"] = marker

    return BatchSettings(**values)
