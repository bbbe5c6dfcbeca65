from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger("wxbridge.tasks")


async def cancel_and_wait(
    task: asyncio.Task[Any] | None, *, timeout_s: float | None = None
) -> None:
    """
    Cancel a background task and wait for it to unwind.

    A task that already finished is only reaped: an exception it ended with is
    logged instead of raised. The calling task is never cancelled from itself.
    """

    if task is None or task is asyncio.current_task():
        return
    if not task.done():
        task.cancel()
        await asyncio.wait([task], timeout=timeout_s)
        if not task.done():
            logger.warning("task %s did not stop within %ss", task.get_name(), timeout_s)
            return
    if not task.cancelled() and task.exception() is not None:
        logger.error("task %s had failed", task.get_name(), exc_info=task.exception())


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    return asyncio.create_task(coro, name=name)
