"""End-to-end runs through the orchestrator with fake stages and a mock index provider."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from app.domain.models import STAGE_ORDER, QueueEntry, RunStatus, StageName
from app.infrastructure.persistence.repositories_memory import InMemoryRenderQueueRepository
from app.config.settings import QueueConfig
from app.pipelines.script import (
    MEDICAL_VOICES,
    PipelineOrchestrator,
    SubmissionRejected,
    index_name,
)
from app.pipelines.script.state import InvalidTransition
from app.services.http_retry import RetryPolicy
from app.services.render_queue import RenderQueue
from app.services.run_tasks import RunTaskRegistry
from app.services.stage_client import StageExecutionError

from conftest import (
    FakeIndexProvider,
    FakeStageClient,
    OWNER_ID,
    RecordingRunRepository,
    check_invariants,
    make_documents,
    make_index_manager,
    make_submission,
    no_sleep,
)


class FlakyQueueRepository(InMemoryRenderQueueRepository):
    """Fails the first ``failures`` enqueue calls."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def enqueue(self, run_id, owner_id, generation_settings):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("queue database unavailable")
        return await super().enqueue(run_id, owner_id, generation_settings)


class FlakySaveRepository(RecordingRunRepository):
    """Raises on the ``fail_on``-th save; later saves succeed."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.saves = 0

    async def save(self, record):
        self.saves += 1
        if self.saves == self.fail_on:
            raise ConnectionError("database connection lost")
        return await super().save(record)


class SlowCommitRepository(RecordingRunRepository):
    """Stores the finished script, then stalls before returning to the caller."""

    def __init__(self) -> None:
        super().__init__()
        self.committed = asyncio.Event()

    async def save(self, record):
        stored = await super().save(record)
        if stored.status is RunStatus.SCRIPT_READY and stored.queue_position is None:
            self.committed.set()
            await asyncio.sleep(3600)
        return stored


def orchestrator_for(runs, *, index_manager=None) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        runs=runs,
        documents=make_documents(),
        stage_client=FakeStageClient(),
        render_queue=RenderQueue(InMemoryRenderQueueRepository(), QueueConfig()),
        index_manager=index_manager,
        sleep=no_sleep,
    )


async def test_successful_run_with_index(runs, documents, queue_repository, make_orchestrator):
    provider = FakeIndexProvider()
    stage_client = FakeStageClient()
    orchestrator = make_orchestrator(stage_client, index_manager=make_index_manager(provider))

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.SCRIPT_READY
    assert record.queue_position == 1
    assert record.retrieval_index_id == "idx-1"
    assert record.retrieval_index_expires_at is not None
    assert record.retrieval_index_expires_at - datetime.now(timezone.utc) > timedelta(days=6)
    assert record.error_message is None
    assert record.completed_stages == list(STAGE_ORDER)
    assert record.finalized_script == {
        "stage": "script-finalization",
        "runId": str(record.id),
    }
    assert provider.bodies("POST", "/files/batch") == [
        {"fileIds": ["file-1", "file-2", "file-3"]}
    ]
    assert stage_client.called_stages == list(STAGE_ORDER)
    for stage in STAGE_ORDER:
        assert stage_client.payload_for(stage)["retrievalIndexId"] == "idx-1"

    entry = await queue_repository.get(record.id)
    assert entry.position == 1
    assert entry.generation_settings["voices"] == MEDICAL_VOICES
    assert entry.generation_settings["synthesisStyle"] == "conversational"


async def test_stage_artifacts_grow_in_order(runs, make_orchestrator):
    orchestrator = make_orchestrator(FakeStageClient())

    record = await orchestrator.run(make_submission())

    persisted = [version for version in runs.history if version.id == record.id]
    lengths = [len(version.stage_artifacts) for version in persisted]
    assert lengths == sorted(lengths)
    assert lengths[0] == 0 and lengths[-1] == 4
    for version in persisted:
        check_invariants(version)


async def test_payloads_thread_upstream_outputs(make_orchestrator):
    stage_client = FakeStageClient()
    orchestrator = make_orchestrator(stage_client)

    record = await orchestrator.run(make_submission(target_duration_minutes=30))
    run_id = str(record.id)

    overview = stage_client.payload_for(StageName.DOCUMENT_OVERVIEW)
    assert overview == {"ownerId": OWNER_ID, "runId": run_id, "retrievalIndexId": None}

    mapping = stage_client.payload_for(StageName.CONTENT_MAPPING)
    assert mapping["overview"] == {"stage": "document-overview", "runId": run_id}

    outline = stage_client.payload_for(StageName.OUTLINE_GENERATION)
    assert outline["contentMap"] == {"stage": "content-mapping", "runId": run_id}
    assert outline["specialty"] == "cardiology"
    assert outline["style"] == "conversational"
    assert outline["targetDuration"] == 30

    final = stage_client.payload_for(StageName.SCRIPT_FINALIZATION)
    assert final["script"] == {"stage": "outline-generation", "runId": run_id}
    assert final["optimizeForTTS"] is True


@pytest.mark.parametrize("failing_index", [0, 1, 2, 3])
async def test_failing_stage_stops_the_run(failing_index, runs, queue_repository, make_orchestrator):
    failing = STAGE_ORDER[failing_index]
    stage_client = FakeStageClient(
        failures={failing: StageExecutionError(failing, 500, '{"error": "model overloaded"}')}
    )
    orchestrator = make_orchestrator(stage_client)

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.FAILED
    assert record.error_message == f"Stage {failing.order} ({failing.value}) failed with HTTP 500"
    assert record.queue_position is None
    assert record.finalized_script is None
    assert stage_client.called_stages == list(STAGE_ORDER[: failing_index + 1])
    assert len(record.stage_artifacts) == failing_index
    assert await queue_repository.count_active() == 0
    for version in runs.history:
        check_invariants(version)


async def test_content_mapping_http_500(make_orchestrator):
    stage_client = FakeStageClient(
        failures={
            StageName.CONTENT_MAPPING: StageExecutionError(
                StageName.CONTENT_MAPPING, 500, "Internal Server Error"
            )
        }
    )
    orchestrator = make_orchestrator(stage_client)

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.FAILED
    assert "Stage 2" in record.error_message
    assert StageName.OUTLINE_GENERATION not in stage_client.called_stages
    assert StageName.SCRIPT_FINALIZATION not in stage_client.called_stages


async def test_unexpected_stage_exception_fails_run(make_orchestrator):
    stage_client = FakeStageClient(
        failures={StageName.OUTLINE_GENERATION: KeyError("speakers")}
    )
    orchestrator = make_orchestrator(stage_client)

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.FAILED
    assert record.error_message == "Stage 3 (outline-generation) failed: unexpected error"
    assert stage_client.called_stages == list(STAGE_ORDER[:3])


@pytest.mark.parametrize(
    "provider",
    [
        FakeIndexProvider(fail_create=True),
        FakeIndexProvider(fail_attach=True),
        FakeIndexProvider(attach_network_error=True),
    ],
    ids=["create-500", "attach-502", "attach-network-error"],
)
async def test_index_failures_degrade_gracefully(provider, make_orchestrator):
    stage_client = FakeStageClient()
    orchestrator = make_orchestrator(stage_client, index_manager=make_index_manager(provider))

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.SCRIPT_READY
    assert record.retrieval_index_id is None
    assert record.retrieval_index_expires_at is None
    assert stage_client.called_stages == list(STAGE_ORDER)
    for stage in STAGE_ORDER:
        assert stage_client.payload_for(stage)["retrievalIndexId"] is None


async def test_attach_failure_deletes_orphaned_index(make_orchestrator):
    provider = FakeIndexProvider(attach_network_error=True)
    orchestrator = make_orchestrator(FakeStageClient(), index_manager=make_index_manager(provider))

    await orchestrator.run(make_submission())

    assert provider.paths("DELETE") == ["/indexes/idx-1"]


async def test_only_completed_uploads_are_attached(make_orchestrator):
    provider = FakeIndexProvider()
    orchestrator = make_orchestrator(FakeStageClient(), index_manager=make_index_manager(provider))

    await orchestrator.run(make_submission(["doc-2", "doc-pending"]))

    assert provider.bodies("POST", "/files/batch") == [{"fileIds": ["file-2"]}]


async def test_index_without_ready_files_skips_attach(make_orchestrator):
    provider = FakeIndexProvider()
    orchestrator = make_orchestrator(FakeStageClient(), index_manager=make_index_manager(provider))

    record = await orchestrator.run(make_submission(["doc-pending"]))

    assert record.retrieval_index_id == "idx-1"
    assert provider.bodies("POST", "/files/batch") == []


async def test_concurrent_completions_get_consecutive_positions(queue_repository, make_orchestrator):
    queue_repository.seed(
        QueueEntry(run_id=uuid4(), owner_id=99, position=position)
        for position in (1, 2)
    )
    orchestrator = make_orchestrator(FakeStageClient())

    records = await asyncio.gather(*(orchestrator.run(make_submission()) for _ in range(12)))

    positions = sorted(record.queue_position for record in records)
    assert positions == list(range(3, 15))


async def test_two_simultaneous_runs_get_different_positions(make_orchestrator):
    orchestrator = make_orchestrator(FakeStageClient())

    first, second = await asyncio.gather(
        orchestrator.run(make_submission()),
        orchestrator.run(make_submission()),
    )

    assert {first.queue_position, second.queue_position} == {1, 2}


async def test_enqueue_is_retried_before_succeeding(make_orchestrator):
    repository = FlakyQueueRepository(failures=2)
    queue = RenderQueue(repository, QueueConfig())
    orchestrator = make_orchestrator(FakeStageClient(), queue=queue)

    record = await orchestrator.run(make_submission())

    assert repository.attempts == 3
    assert record.status is RunStatus.SCRIPT_READY
    assert record.queue_position == 1


async def test_enqueue_failure_keeps_script_ready(runs, make_orchestrator):
    repository = FlakyQueueRepository(failures=5)
    queue = RenderQueue(repository, QueueConfig())
    orchestrator = make_orchestrator(
        FakeStageClient(), queue=queue, enqueue_policy=RetryPolicy(max_attempts=3)
    )

    record = await orchestrator.run(make_submission())

    assert repository.attempts == 3
    assert record.status is RunStatus.SCRIPT_READY
    assert record.queue_position is None
    assert record.error_message is None
    assert record.finalized_script is not None

    repository.failures = 0
    retried = await orchestrator.retry_enqueue(record.id)
    assert retried.queue_position == 1
    check_invariants(retried)

    with pytest.raises(InvalidTransition):
        await orchestrator.retry_enqueue(record.id)


async def test_retry_enqueue_rejects_failed_runs(make_orchestrator):
    stage_client = FakeStageClient(
        failures={
            StageName.DOCUMENT_OVERVIEW: StageExecutionError(
                StageName.DOCUMENT_OVERVIEW, None, "", reason="transport timeout after 120s"
            )
        }
    )
    orchestrator = make_orchestrator(stage_client)

    record = await orchestrator.run(make_submission())

    assert record.error_message == "Stage 1 (document-overview) failed: transport timeout after 120s"
    with pytest.raises(InvalidTransition):
        await orchestrator.retry_enqueue(record.id)


async def test_cancelling_run_task_persists_failure(runs, make_orchestrator):
    stage_client = FakeStageClient(block_on=StageName.CONTENT_MAPPING)
    orchestrator = make_orchestrator(stage_client)
    registry = RunTaskRegistry()

    created = await orchestrator.submit(make_submission())
    task = registry.start(created.id, orchestrator.execute(created.id))
    await asyncio.wait_for(stage_client.blocked.wait(), timeout=1)

    assert registry.cancel(created.id) is True
    await registry.wait(created.id)

    assert task.cancelled()
    assert not registry.is_running(created.id)
    record = await runs.get(created.id)
    assert record.status is RunStatus.FAILED
    assert record.error_message == "Run cancelled"
    assert record.completed_stages == [StageName.DOCUMENT_OVERVIEW]
    check_invariants(record)


async def test_cancel_after_script_ready_is_stored_keeps_the_script():
    runs = SlowCommitRepository()
    orchestrator = orchestrator_for(runs)
    registry = RunTaskRegistry()

    created = await orchestrator.submit(make_submission())
    task = registry.start(created.id, orchestrator.execute(created.id))
    await asyncio.wait_for(runs.committed.wait(), timeout=1)

    registry.cancel(created.id)
    await registry.wait(created.id)

    assert task.cancelled()
    record = await runs.get(created.id)
    assert record.status is RunStatus.SCRIPT_READY
    assert record.error_message is None
    assert record.completed_stages == list(STAGE_ORDER)
    assert record.finalized_script == {"stage": "script-finalization", "runId": str(created.id)}
    assert record.queue_position is None
    assert all(saved.status is not RunStatus.FAILED for saved in runs.history)


async def test_index_persist_failure_degrades_and_drops_index():
    provider = FakeIndexProvider()
    runs = FlakySaveRepository(fail_on=1)
    orchestrator = orchestrator_for(runs, index_manager=make_index_manager(provider))

    record = await orchestrator.run(make_submission())

    assert record.status is RunStatus.SCRIPT_READY
    assert record.retrieval_index_id is None
    assert record.retrieval_index_expires_at is None
    assert provider.paths("DELETE") == ["/indexes/idx-1"]
    check_invariants(record)


@pytest.mark.parametrize("fail_on", [1, 3, 4])
async def test_stage_save_failure_leaves_run_failed(fail_on):
    runs = FlakySaveRepository(fail_on=fail_on)
    orchestrator = orchestrator_for(runs)
    created = await orchestrator.submit(make_submission())

    with pytest.raises(ConnectionError):
        await orchestrator.execute(created.id)

    stage = STAGE_ORDER[fail_on - 1]
    record = await runs.get(created.id)
    assert record.status is RunStatus.FAILED
    assert record.error_message == (
        f"Stage {stage.order} ({stage.value}) failed: could not record result"
    )
    assert record.completed_stages == list(STAGE_ORDER[: fail_on - 1])
    check_invariants(record)


async def test_mark_cancelled_without_task(make_orchestrator):
    orchestrator = make_orchestrator(FakeStageClient())
    created = await orchestrator.submit(make_submission())

    record = await orchestrator.mark_cancelled(created.id)

    assert record.status is RunStatus.FAILED
    assert record.error_message == "Run cancelled"
    with pytest.raises(InvalidTransition):
        await orchestrator.mark_cancelled(created.id)


async def test_execute_refuses_finished_runs(make_orchestrator):
    orchestrator = make_orchestrator(FakeStageClient())
    record = await orchestrator.run(make_submission())

    with pytest.raises(InvalidTransition):
        await orchestrator.execute(record.id)


async def test_execute_unknown_run():
    orchestrator = PipelineOrchestrator(
        runs=RecordingRunRepository(),
        documents=make_documents(),
        stage_client=FakeStageClient(),
        render_queue=RenderQueue(InMemoryRenderQueueRepository(), QueueConfig()),
    )

    with pytest.raises(LookupError):
        await orchestrator.execute(UUID(int=0))


@pytest.mark.parametrize(
    "document_ids, overrides, message",
    [
        ([], {}, "At least one document"),
        (["doc-1", "doc-missing"], {}, "Unknown documents: doc-missing"),
        (["doc-foreign"], {}, "Unknown documents: doc-foreign"),
        (["doc-1"], {"specialty": "   "}, "specialty"),
        (["doc-1"], {"title": ""}, "title"),
        (["doc-1"], {"target_duration_minutes": 0}, "duration"),
    ],
)
async def test_invalid_submissions_create_nothing(
    document_ids, overrides, message, runs, make_orchestrator
):
    stage_client = FakeStageClient()
    orchestrator = make_orchestrator(stage_client)

    with pytest.raises(SubmissionRejected, match=message):
        await orchestrator.submit(make_submission(document_ids, **overrides))

    assert runs.history == []
    assert stage_client.calls == []


async def test_duplicate_document_ids_are_collapsed(make_orchestrator):
    orchestrator = make_orchestrator(FakeStageClient())

    record = await orchestrator.submit(make_submission(["doc-1", "doc-2", "doc-1"]))

    assert record.document_ids == ["doc-1", "doc-2"]
    assert record.status is RunStatus.PROCESSING


def test_index_name_embeds_run_and_epoch_millis():
    run_id = uuid4()
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)

    assert index_name(run_id, now) == f"script_run_{run_id}_{int(now.timestamp() * 1000)}"
