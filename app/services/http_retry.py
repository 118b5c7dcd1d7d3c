"""Retry policy with capped exponential backoff for outbound calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from app.config.settings import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUSES = frozenset({429, 502, 503})


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry, how long to wait, and which failures qualify."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    backoff_factor: float = 2.0
    retryable_statuses: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUSES)

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            backoff_factor=config.backoff_factor,
            retryable_statuses=frozenset(config.retryable_statuses),
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1, base_delay_seconds=0.0, max_delay_seconds=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""

        delay = self.base_delay_seconds * (self.backoff_factor ** attempt)
        return min(delay, self.max_delay_seconds)

    def is_retryable_status(self, status_code: Optional[int]) -> bool:
        return status_code is not None and status_code in self.retryable_statuses


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    label: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    The last exception is re-raised unchanged so callers keep their typed errors.
    """

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            attempt += 1
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)


__all__ = ["RetryPolicy", "call_with_retry", "DEFAULT_RETRYABLE_STATUSES"]
