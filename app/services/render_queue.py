"""FIFO render queue that finished scripts join before audio synthesis."""

from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID

from app.application.interfaces import RenderQueueRepositoryInterface
from app.config.settings import QueueConfig

logger = logging.getLogger(__name__)


class QueueEnqueueError(RuntimeError):
    """Raised when a run could not be placed on the render queue."""


class RenderQueue:
    """Assigns queue positions and estimates wait times."""

    def __init__(
        self,
        repository: RenderQueueRepositoryInterface,
        config: QueueConfig,
    ) -> None:
        self._repository = repository
        self._baseline_seconds = config.baseline_wait_seconds
        self._per_job_seconds = config.per_job_seconds

    async def enqueue(
        self,
        run_id: UUID,
        owner_id: int,
        generation_settings: Mapping[str, Any] | None = None,
    ) -> int:
        """Place the run on the queue and return its 1-based position."""

        try:
            entry = await self._repository.enqueue(
                run_id, owner_id, dict(generation_settings or {})
            )
        except QueueEnqueueError:
            raise
        except Exception as exc:
            raise QueueEnqueueError(f"Failed to enqueue run {run_id}: {exc}") from exc

        logger.info("Run %s enqueued at position %d", run_id, entry.position)
        return entry.position

    def estimate_wait_seconds(self, position: int) -> int:
        return max(self._baseline_seconds, position * self._per_job_seconds)


__all__ = ["QueueEnqueueError", "RenderQueue"]
