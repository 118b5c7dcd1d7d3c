"""Shared fixtures: in-memory repositories, fake stage services and a mock index provider."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from app.application.interfaces import StageClientInterface  # noqa: E402
from app.config.settings import IndexProviderConfig, QueueConfig  # noqa: E402
from app.domain.models import Owner, RunParameters, RunRecord, SourceDocument, StageName  # noqa: E402
from app.infrastructure.persistence.repositories_memory import (  # noqa: E402
    InMemoryDocumentRepository,
    InMemoryOwnerRepository,
    InMemoryRenderQueueRepository,
    InMemoryRunRepository,
)
from app.pipelines.script import PipelineOrchestrator, RunSubmission  # noqa: E402
from app.services.http_retry import RetryPolicy  # noqa: E402
from app.services.render_queue import RenderQueue  # noqa: E402
from app.services.retrieval_index import RetrievalIndexManager  # noqa: E402

OWNER_ID = 7
OTHER_OWNER_ID = 8
INACTIVE_OWNER_ID = 9
READY_DOCUMENT_IDS = ["doc-1", "doc-2", "doc-3"]


async def no_sleep(_delay: float) -> None:
    return None


def check_invariants(record: RunRecord) -> None:
    """Status invariants every persisted run must satisfy."""

    assert (record.status.value == "failed") == (record.error_message is not None)
    if record.queue_position is not None:
        assert record.status.value == "script_ready"
    stages = record.completed_stages
    assert stages == list(StageName)[: len(stages)]


class RecordingRunRepository(InMemoryRunRepository):
    """Keeps every persisted version so intermediate states can be inspected."""

    def __init__(self) -> None:
        super().__init__()
        self.history: List[RunRecord] = []

    async def create(self, record: RunRecord) -> RunRecord:
        stored = await super().create(record)
        self.history.append(stored)
        return stored

    async def save(self, record: RunRecord) -> RunRecord:
        stored = await super().save(record)
        self.history.append(stored)
        return stored


class FakeStageClient(StageClientInterface):
    """Stage client that records calls and fails or blocks on demand."""

    def __init__(
        self,
        *,
        failures: Optional[Dict[StageName, Exception]] = None,
        block_on: Optional[StageName] = None,
    ) -> None:
        self.calls: List[tuple[StageName, Dict[str, Any]]] = []
        self.failures = failures or {}
        self.block_on = block_on
        self.blocked = asyncio.Event()

    @property
    def called_stages(self) -> List[StageName]:
        return [stage for stage, _ in self.calls]

    def payload_for(self, stage: StageName) -> Dict[str, Any]:
        for called, payload in self.calls:
            if called is stage:
                return payload
        raise KeyError(stage)

    async def invoke(self, stage: StageName, payload: Dict[str, Any]) -> Any:
        self.calls.append((stage, dict(payload)))
        if stage is self.block_on:
            self.blocked.set()
            await asyncio.sleep(3600)
        failure = self.failures.get(stage)
        if failure is not None:
            raise failure
        # Yield so concurrent runs interleave like real network calls.
        await asyncio.sleep(0)
        return {"stage": stage.value, "runId": payload["runId"]}


class FakeIndexProvider:
    """``httpx.MockTransport`` handler emulating the index provider REST API."""

    def __init__(
        self,
        *,
        fail_create: bool = False,
        fail_attach: bool = False,
        attach_network_error: bool = False,
    ) -> None:
        self.fail_create = fail_create
        self.fail_attach = fail_attach
        self.attach_network_error = attach_network_error
        self.requests: List[httpx.Request] = []
        self.created = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/indexes":
            if self.fail_create:
                return httpx.Response(500, json={"error": "provider down"})
            self.created += 1
            return httpx.Response(200, json={"indexId": f"idx-{self.created}"})
        if request.method == "POST" and path.endswith("/files/batch"):
            if self.attach_network_error:
                raise httpx.ConnectError("connection reset", request=request)
            if self.fail_attach:
                return httpx.Response(502, json={"error": "bad gateway"})
            return httpx.Response(200, json={"status": "in_progress"})
        if request.method == "DELETE" and path.startswith("/indexes/"):
            return httpx.Response(200, json={"deleted": True})
        return httpx.Response(404, json={"error": "not found"})

    def bodies(self, method: str, suffix: str) -> List[Dict[str, Any]]:
        return [
            json.loads(request.content or b"{}")
            for request in self.requests
            if request.method == method and request.url.path.endswith(suffix)
        ]

    def paths(self, method: str) -> List[str]:
        return [request.url.path for request in self.requests if request.method == method]


def make_index_manager(provider: FakeIndexProvider) -> RetrievalIndexManager:
    config = IndexProviderConfig(enabled=True, base_url="https://index.test", retention_days=7)
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(provider),
        base_url=config.base_url,
    )
    return RetrievalIndexManager(config, http_client=client)


def make_documents() -> InMemoryDocumentRepository:
    documents = [
        SourceDocument(
            id=doc_id,
            owner_id=OWNER_ID,
            title=f"Cardiology guideline {index}",
            file_ref=f"file-{index}",
            upload_status="completed",
        )
        for index, doc_id in enumerate(READY_DOCUMENT_IDS, start=1)
    ]
    documents.append(
        SourceDocument(
            id="doc-pending",
            owner_id=OWNER_ID,
            title="Still uploading",
            file_ref=None,
            upload_status="processing",
        )
    )
    documents.append(
        SourceDocument(
            id="doc-foreign",
            owner_id=OTHER_OWNER_ID,
            title="Someone else's notes",
            file_ref="file-foreign",
            upload_status="completed",
        )
    )
    return InMemoryDocumentRepository(documents)


def make_owners() -> InMemoryOwnerRepository:
    return InMemoryOwnerRepository(
        [
            Owner(id=OWNER_ID, email="host@example.org"),
            Owner(id=OTHER_OWNER_ID, email="other@example.org"),
            Owner(id=INACTIVE_OWNER_ID, email="gone@example.org", status="suspended"),
        ]
    )


def make_submission(document_ids: Optional[List[str]] = None, **overrides: Any) -> RunSubmission:
    params = {
        "title": "Heart failure update",
        "synthesis_style": "conversational",
        "specialty": "cardiology",
        "target_duration_minutes": 20,
    }
    params.update(overrides)
    return RunSubmission(
        owner_id=OWNER_ID,
        parameters=RunParameters(**params),
        document_ids=list(READY_DOCUMENT_IDS if document_ids is None else document_ids),
    )


@pytest.fixture
def runs() -> RecordingRunRepository:
    return RecordingRunRepository()


@pytest.fixture
def documents() -> InMemoryDocumentRepository:
    return make_documents()


@pytest.fixture
def queue_repository() -> InMemoryRenderQueueRepository:
    return InMemoryRenderQueueRepository()


@pytest.fixture
def render_queue(queue_repository: InMemoryRenderQueueRepository) -> RenderQueue:
    return RenderQueue(queue_repository, QueueConfig())


@pytest.fixture
def stage_client() -> FakeStageClient:
    return FakeStageClient()


@pytest.fixture
def make_orchestrator(
    runs: RecordingRunRepository,
    documents: InMemoryDocumentRepository,
    render_queue: RenderQueue,
) -> Callable[..., PipelineOrchestrator]:
    def factory(
        stage_client: StageClientInterface,
        *,
        index_manager: Optional[RetrievalIndexManager] = None,
        queue: Optional[RenderQueue] = None,
        enqueue_policy: Optional[RetryPolicy] = None,
    ) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            runs=runs,
            documents=documents,
            stage_client=stage_client,
            render_queue=queue or render_queue,
            index_manager=index_manager,
            enqueue_policy=enqueue_policy or RetryPolicy(max_attempts=3),
            sleep=no_sleep,
        )

    return factory
