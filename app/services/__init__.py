"""Service layer helpers for external integrations."""

from .http_retry import RetryPolicy, call_with_retry
from .rate_limit import RateLimitExceeded, SubmissionRateLimiter
from .render_queue import QueueEnqueueError, RenderQueue
from .retrieval_index import IndexProviderError, RetrievalIndexManager, expiry
from .run_tasks import RunTaskRegistry
from .stage_client import HttpStageClient, StageExecutionError

__all__ = [
    "HttpStageClient",
    "IndexProviderError",
    "QueueEnqueueError",
    "RateLimitExceeded",
    "RenderQueue",
    "RetrievalIndexManager",
    "RetryPolicy",
    "RunTaskRegistry",
    "StageExecutionError",
    "SubmissionRateLimiter",
    "call_with_retry",
    "expiry",
]
