"""Sliding-window throttle for run submissions."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from app.application.interfaces import CounterStoreInterface
from app.config.settings import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimitExceeded(RuntimeError):
    """Raised when an owner submits more runs than the window allows."""

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Submission limit reached; retry in {retry_after_seconds}s")


class SubmissionRateLimiter:
    def __init__(
        self,
        store: CounterStoreInterface,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._limit = config.submissions_per_window
        self._window = config.window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    async def check(self, owner_id: int) -> float:
        """Reserve one submission for ``owner_id`` or raise ``RateLimitExceeded``.

        Returns the reservation timestamp, which ``release`` takes back when the
        submission is rejected before a run is created.
        """

        key = self._key(owner_id)
        async with self._lock:
            now = self._clock()
            used = await self._store.hits_since(key, now - self._window)
            if used >= self._limit:
                logger.info("Rate limit hit owner=%s used=%d limit=%d", owner_id, used, self._limit)
                raise RateLimitExceeded(self._window)
            await self._store.record_hit(key, now)
            return now

    async def release(self, owner_id: int, reserved_at: float) -> None:
        async with self._lock:
            await self._store.discard_hit(self._key(owner_id), reserved_at)

    @staticmethod
    def _key(owner_id: int) -> str:
        return f"submissions:{owner_id}"


__all__ = ["RateLimitExceeded", "SubmissionRateLimiter"]
