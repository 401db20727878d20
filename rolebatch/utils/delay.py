"""Pacing delay helper.

Every pacing pause in the package goes through `delay` so callers (and tests)
have one seam for time.
"""

from __future__ import annotations

import asyncio


async def delay(ms: float) -> None:
    """Suspend the current task for `ms` milliseconds."""

    if ms <= 0:
        return
    await asyncio.sleep(ms / 1000.0)
