"""
Helpers for fire-and-forget asyncio tasks.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


def log_task_exception(task: asyncio.Task):
    """
    Done-callback that retrieves a task's exception so asyncio never reports
    "exception was never retrieved" when every awaiter has gone away.
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Background task {task.get_name()} finished with error: {exc}")
