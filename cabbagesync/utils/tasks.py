"""Utilities for managing background and fan-out tasks."""

import asyncio
import logging
from typing import Any, Coroutine, Iterable

logger = logging.getLogger(__name__)

# Strong references so pending tasks are not garbage collected mid-flight
_background_tasks: set[asyncio.Task] = set()


def create_background_task(coro: Coroutine[Any, Any, Any], task_name: str = "background_task") -> asyncio.Task:
    """
    Create a background task with proper error handling.

    Exceptions in the task will be logged instead of silently lost.
    """
    async def _wrapped_task():
        try:
            await coro
        except Exception as e:
            logger.exception(f"Error in background task '{task_name}': {e}")

    task = asyncio.create_task(_wrapped_task(), name=task_name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def settle_all(coros: Iterable[Coroutine[Any, Any, Any]], label: str) -> list[Any]:
    """
    Run coroutines concurrently and wait for every one of them to finish.

    A failure in one never cancels the others. Failures are logged and
    returned in place of the result.
    """
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            logger.error(f"{label} failed: {result!r}")
    return results
