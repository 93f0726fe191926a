"""Small asyncio helpers shared by the interval-driven subsystems."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


async def cancel_task(task: Optional[asyncio.Task[Any]]) -> None:
    """Cancel and reap ``task``; a no-op for ``None``, finished tasks and the caller's own task."""
    if task is None or task.done():
        return
    if task is asyncio.current_task():
        # A loop that triggers teardown must not cancel itself mid-handler.
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning("Error during task cleanup (%s): %s", task.get_name(), e)
