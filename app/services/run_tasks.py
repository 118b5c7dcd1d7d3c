"""Registry of in-flight pipeline tasks so runs can be cancelled."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable
from uuid import UUID

logger = logging.getLogger(__name__)


class RunTaskRegistry:
    """Tracks one asyncio task per run id."""

    def __init__(self) -> None:
        self._tasks: dict[UUID, asyncio.Task] = {}

    def start(self, run_id: UUID, coro: Awaitable) -> asyncio.Task:
        if run_id in self._tasks:
            raise ValueError(f"Run {run_id} is already executing")
        task = asyncio.ensure_future(coro)
        self._tasks[run_id] = task
        task.add_done_callback(lambda finished: self._on_done(run_id, finished))
        return task

    def _on_done(self, run_id: UUID, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.info("Run task %s cancelled", run_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Run task %s crashed", run_id, exc_info=exc)

    def is_running(self, run_id: UUID) -> bool:
        return run_id in self._tasks

    def cancel(self, run_id: UUID) -> bool:
        task = self._tasks.get(run_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def wait(self, run_id: UUID) -> None:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for their cleanup."""

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["RunTaskRegistry"]
