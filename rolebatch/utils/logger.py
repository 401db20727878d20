"""Logging helpers for rolebatch.

Module loggers come from `logging.getLogger("rolebatch.<area>")`. Run-level
messages (start and finish of an operation, core events) go through
`log_info`/`log_warn`/`log_error`, which emit one JSON object per line on the
`rolebatch.runs` logger so a run can be followed by its `run_id`.
"""

import json
import logging
import uuid
from typing import Optional

RUN_LOGGER = "rolebatch.runs"
RUN_PREFIX = "[ROLEBATCH]"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger, falling back to a console handler if none is set up."""

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    return logging.getLogger(name or "rolebatch")


def generate_run_id() -> str:
    return str(uuid.uuid4())


def _emit(level: int, msg: str, group_id: Optional[str], run_id: Optional[str], extra: dict) -> None:
    record = {"message": f"{RUN_PREFIX} {msg}"}
    if group_id is not None:
        record["group_id"] = group_id
    if run_id is not None:
        record["run_id"] = run_id
    if extra:
        record["extra"] = extra
    get_logger(RUN_LOGGER).log(level, json.dumps(record, default=str))


def log_info(msg: str, group_id: Optional[str] = None, run_id: Optional[str] = None, **extra: object) -> None:
    _emit(logging.INFO, msg, group_id, run_id, extra)


def log_warn(msg: str, group_id: Optional[str] = None, run_id: Optional[str] = None, **extra: object) -> None:
    _emit(logging.WARNING, msg, group_id, run_id, extra)


def log_error(msg: str, group_id: Optional[str] = None, run_id: Optional[str] = None, **extra: object) -> None:
    _emit(logging.ERROR, msg, group_id, run_id, extra)
