import asyncio
import inspect
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

# Strong references so fire-and-forget tasks are not garbage collected mid-flight
_background_tasks: set[asyncio.Task[Any]] = set()


def _on_task_done(task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task failed: %s", exc, exc_info=exc)


def run_coroutine_safe(coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
    """Schedule a coroutine on the running event loop without awaiting it."""
    if not inspect.iscoroutine(coro):
        logger.warning("Expected a coroutine, got %s", type(coro).__name__)
        return None

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No event loop available to run coroutine")
        coro.close()
        return None

    task = loop.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task
