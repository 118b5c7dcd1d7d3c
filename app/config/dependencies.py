"""Wiring of repositories and services shared by the HTTP layer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.application.interfaces import (
    CounterStoreInterface,
    DocumentRepositoryInterface,
    OwnerRepositoryInterface,
    RenderQueueRepositoryInterface,
    RunRepositoryInterface,
    StageClientInterface,
)
from app.infrastructure.persistence.repositories_memory import InMemoryCounterStore
from app.pipelines.script import PipelineOrchestrator
from app.services.http_retry import RetryPolicy
from app.services.rate_limit import SubmissionRateLimiter
from app.services.render_queue import RenderQueue
from app.services.retrieval_index import RetrievalIndexManager
from app.services.run_tasks import RunTaskRegistry
from app.services.stage_client import HttpStageClient

from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything a request handler may need, built once per application."""

    runs: RunRepositoryInterface
    documents: DocumentRepositoryInterface
    owners: OwnerRepositoryInterface
    render_queue: RenderQueue
    orchestrator: PipelineOrchestrator
    rate_limiter: SubmissionRateLimiter
    tasks: RunTaskRegistry
    stage_client: StageClientInterface
    index_manager: Optional[RetrievalIndexManager] = None

    async def aclose(self) -> None:
        """Cancel in-flight runs, then release outbound HTTP clients."""

        await self.tasks.shutdown()
        closer = getattr(self.stage_client, "aclose", None)
        if closer is not None:
            await closer()
        if self.index_manager is not None:
            await self.index_manager.aclose()
        logger.info("Service container closed")


def build_services(
    config: Settings,
    *,
    runs: RunRepositoryInterface,
    documents: DocumentRepositoryInterface,
    owners: OwnerRepositoryInterface,
    queue_repository: RenderQueueRepositoryInterface,
    stage_client: Optional[StageClientInterface] = None,
    index_manager: Optional[RetrievalIndexManager] = None,
    counter_store: Optional[CounterStoreInterface] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ServiceContainer:
    """Assemble the service graph around the given repositories."""

    retry_policy = RetryPolicy.from_config(config.retry)
    if stage_client is None:
        stage_client = HttpStageClient(config.stages, retry_policy=retry_policy)
    if index_manager is None and config.index_provider.enabled:
        index_manager = RetrievalIndexManager(config.index_provider)

    render_queue = RenderQueue(queue_repository, config.queue)
    orchestrator = PipelineOrchestrator(
        runs=runs,
        documents=documents,
        stage_client=stage_client,
        render_queue=render_queue,
        index_manager=index_manager,
        enqueue_policy=retry_policy,
        sleep=sleep,
    )
    rate_limiter = SubmissionRateLimiter(
        counter_store or InMemoryCounterStore(config.rate_limit.max_tracked_owners),
        config.rate_limit,
    )
    return ServiceContainer(
        runs=runs,
        documents=documents,
        owners=owners,
        render_queue=render_queue,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
        tasks=RunTaskRegistry(),
        stage_client=stage_client,
        index_manager=index_manager,
    )


def build_database_services(config: Settings) -> ServiceContainer:
    """Service graph backed by the SQLAlchemy repositories."""

    from app.database import session_scope
    from app.infrastructure.persistence.repositories_sqlalchemy import (
        SQLAlchemyDocumentRepository,
        SQLAlchemyOwnerRepository,
        SQLAlchemyRenderQueueRepository,
        SQLAlchemyRunRepository,
    )

    return build_services(
        config,
        runs=SQLAlchemyRunRepository(session_scope),
        documents=SQLAlchemyDocumentRepository(session_scope),
        owners=SQLAlchemyOwnerRepository(session_scope),
        queue_repository=SQLAlchemyRenderQueueRepository(session_scope, config.queue.name),
    )


__all__ = ["ServiceContainer", "build_database_services", "build_services"]
