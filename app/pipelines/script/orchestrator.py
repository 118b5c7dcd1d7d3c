"""Drives one script generation run from submission to the render queue.

Every state change goes through ``state.transition`` and is persisted before
the next network call, so a reader polling the run always sees a record that
satisfies the status invariants.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID, uuid4

from app.application.interfaces import (
    DocumentRepositoryInterface,
    RunRepositoryInterface,
    StageClientInterface,
)
from app.domain.models import STAGE_ORDER, RunRecord, StageName
from app.services.http_retry import RetryPolicy, call_with_retry
from app.services.render_queue import QueueEnqueueError, RenderQueue
from app.services.retrieval_index import RetrievalIndexManager, expiry
from app.services.stage_client import StageExecutionError
from app.telemetry import (
    observe_stage,
    record_enqueue_failure,
    record_index_degradation,
    record_run_outcome,
)

from .flow import ScriptGenerationPipeline
from .payloads import build_stage_payload
from .state import (
    Cancelled,
    Enqueued,
    Failed,
    InvalidTransition,
    Processing,
    RunEvent,
    RunState,
    ScriptReady,
    StageCompleted,
    StageFailed,
    apply_state,
    state_of,
    transition,
)
from .types import RunSubmission

logger = logging.getLogger("app.pipelines.script")

MEDICAL_VOICES: Dict[str, str] = {
    "host": "wyWA56cQNU2KqUW4eCsI",
    "expert": "uYXf8XasLslADfZ2MB4u",
}


class SubmissionRejected(RuntimeError):
    """Raised when a submission is invalid; no run is created."""


def index_name(run_id: UUID, now: datetime | None = None) -> str:
    reference = now or datetime.now(timezone.utc)
    return f"script_run_{run_id}_{int(reference.timestamp() * 1000)}"


class PipelineOrchestrator:
    """Creates runs, executes their four stages and hands them to the queue."""

    def __init__(
        self,
        *,
        runs: RunRepositoryInterface,
        documents: DocumentRepositoryInterface,
        stage_client: StageClientInterface,
        render_queue: RenderQueue,
        index_manager: Optional[RetrievalIndexManager] = None,
        enqueue_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._runs = runs
        self._documents = documents
        self._stage_client = stage_client
        self._render_queue = render_queue
        self._index_manager = index_manager
        self._enqueue_policy = enqueue_policy or RetryPolicy()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    async def submit(self, submission: RunSubmission) -> RunRecord:
        """Validate ``submission`` and persist a new ``processing`` run."""

        params = submission.parameters
        if not submission.document_ids:
            raise SubmissionRejected("At least one document is required")
        for label, value in (
            ("title", params.title),
            ("synthesis_style", params.synthesis_style),
            ("specialty", params.specialty),
        ):
            if not value or not value.strip():
                raise SubmissionRejected(f"Field '{label}' is required")
        if params.target_duration_minutes < 1:
            raise SubmissionRejected("Target duration must be at least one minute")

        document_ids = list(dict.fromkeys(submission.document_ids))
        documents = await self._documents.list_for_owner(submission.owner_id, document_ids)
        found = {doc.id for doc in documents}
        missing = [doc_id for doc_id in document_ids if doc_id not in found]
        if missing:
            raise SubmissionRejected(f"Unknown documents: {', '.join(missing)}")

        record = RunRecord(
            id=uuid4(),
            owner_id=submission.owner_id,
            parameters=params,
            document_ids=document_ids,
        )
        created = await self._runs.create(record)
        logger.info(
            "Run %s created for owner=%s with %d documents",
            created.id,
            created.owner_id,
            len(document_ids),
        )
        return created

    async def run(self, submission: RunSubmission) -> RunRecord:
        """Submit and execute in one call."""

        record = await self.submit(submission)
        return await self.execute(record.id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, run_id: UUID) -> RunRecord:
        """Run the pipeline for a freshly created run and return its final record."""

        record = await self._load(run_id)
        state: RunState = state_of(record)
        if not isinstance(state, Processing) or state.artifacts:
            raise InvalidTransition(f"Run {run_id} is not a fresh processing run")

        stage = STAGE_ORDER[0]
        try:
            record = await self._attach_retrieval_index(record)
            for stage in STAGE_ORDER:
                event = await self._run_stage(stage, record)
                state = transition(state, event)
                record = await self._runs.save(apply_state(record, state))
                if isinstance(state, Failed):
                    logger.error("Run %s failed: %s", record.id, state.error)
                    record_run_outcome("failed")
                    return record
        except asyncio.CancelledError:
            await asyncio.shield(self._abandon(run_id, Cancelled(), "cancelled"))
            raise
        except Exception:
            logger.exception("Run %s could not record stage %s", run_id, stage.value)
            if isinstance(state, Failed):
                failure = StageFailed(stage, state.error)
            else:
                failure = StageFailed(
                    stage, f"Stage {stage.order} ({stage.value}) failed: could not record result"
                )
            await self._abandon(run_id, failure, "failed")
            raise

        if not isinstance(state, ScriptReady):
            raise InvalidTransition(f"Run {record.id} finished its stages in state {state!r}")
        record_run_outcome("script_ready")
        logger.info("Run %s script ready", record.id)
        try:
            return await self._enqueue(record, state)
        except QueueEnqueueError as exc:
            record_enqueue_failure()
            logger.error(
                "Run %s is script_ready but could not be enqueued: %s", record.id, exc
            )
            return record

    async def retry_enqueue(self, run_id: UUID) -> RunRecord:
        """Enqueue a ``script_ready`` run whose earlier enqueue failed."""

        record = await self._load(run_id)
        state = state_of(record)
        if not isinstance(state, ScriptReady) or state.queue_position is not None:
            raise InvalidTransition(f"Run {run_id} is not awaiting a queue position")
        try:
            return await self._enqueue(record, state)
        except QueueEnqueueError:
            record_enqueue_failure()
            raise

    async def mark_cancelled(self, run_id: UUID) -> RunRecord:
        """Fail a ``processing`` run that has no live task in this process."""

        record = await self._load(run_id)
        cancelled = apply_state(record, transition(state_of(record), Cancelled()))
        record_run_outcome("cancelled")
        logger.warning("Run %s cancelled without a live task", run_id)
        return await self._runs.save(cancelled)

    async def _abandon(self, run_id: UUID, event: RunEvent, outcome: str) -> None:
        """Persist ``failed`` for a run that is still ``processing`` in storage.

        The stored record is reloaded first: a save that committed before the
        caller saw it return must not be overwritten.
        """

        try:
            current = await self._load(run_id)
            persisted = state_of(current)
            if not isinstance(persisted, Processing):
                logger.info("Run %s already %s; not marking it %s", run_id, current.status.value, outcome)
                return
            await self._runs.save(apply_state(current, transition(persisted, event)))
        except Exception:
            logger.exception("Run %s could not be marked %s", run_id, outcome)
            return
        record_run_outcome(outcome)
        logger.warning("Run %s %s after %d stages", run_id, outcome, len(persisted.artifacts))

    async def _load(self, run_id: UUID) -> RunRecord:
        record = await self._runs.get(run_id)
        if record is None:
            raise LookupError(f"Run {run_id} not found")
        return record

    async def _attach_retrieval_index(self, record: RunRecord) -> RunRecord:
        manager = self._index_manager
        if manager is None or not manager.enabled:
            return record

        index_id: Optional[str] = None
        step = "documents"
        try:
            documents = await self._documents.list_for_owner(record.owner_id, record.document_ids)
            file_refs = [doc.file_ref for doc in documents if doc.is_ready]
            step = "create"
            index_id = await manager.create_index(index_name(record.id))
            step = "attach"
            await manager.attach_files(index_id, file_refs)
            step = "persist"
            retention = record.parameters.retention_days or manager.retention_days
            return await self._runs.save(
                record.model_copy(
                    update={
                        "retrieval_index_id": index_id,
                        "retrieval_index_expires_at": expiry(retention),
                    }
                )
            )
        except Exception as exc:
            logger.warning(
                "Run %s continues without retrieval index (%s failed): %s",
                record.id,
                step,
                exc,
            )
            record_index_degradation(step)
            if index_id is not None:
                await self._discard_index(manager, index_id)
            return record

    async def _discard_index(self, manager: RetrievalIndexManager, index_id: str) -> None:
        try:
            await manager.delete_index(index_id)
        except Exception as exc:
            logger.warning("Could not delete orphaned retrieval index %s: %s", index_id, exc)

    async def _run_stage(self, stage: StageName, record: RunRecord) -> RunEvent:
        described = ScriptGenerationPipeline.describe_stage(stage)
        payload = build_stage_payload(stage, record)
        logger.info(
            "Run %s stage %d (%s) started index=%s",
            record.id,
            described.order,
            described.name,
            record.retrieval_index_id,
        )

        started = time.perf_counter()
        try:
            output: Any = await self._stage_client.invoke(stage, payload)
        except StageExecutionError as exc:
            observe_stage(stage.value, time.perf_counter() - started, failed=True)
            logger.error(
                "Run %s %s; body=%s",
                record.id,
                exc.summary,
                exc.raw_body[:500],
            )
            return StageFailed(stage, exc.summary)
        except Exception:
            observe_stage(stage.value, time.perf_counter() - started, failed=True)
            logger.exception("Run %s stage %s raised unexpectedly", record.id, stage.value)
            return StageFailed(
                stage, f"Stage {stage.order} ({stage.value}) failed: unexpected error"
            )

        elapsed = time.perf_counter() - started
        observe_stage(stage.value, elapsed)
        logger.info(
            "Run %s stage %d (%s) finished in %.2fs",
            record.id,
            described.order,
            described.name,
            elapsed,
        )
        return StageCompleted(stage, output)

    def _generation_settings(self, record: RunRecord) -> Dict[str, Any]:
        return {
            "synthesisStyle": record.parameters.synthesis_style,
            "targetDurationMinutes": record.parameters.target_duration_minutes,
            "voices": dict(MEDICAL_VOICES),
        }

    async def _enqueue(self, record: RunRecord, state: ScriptReady) -> RunRecord:
        generation_settings = self._generation_settings(record)
        position = await call_with_retry(
            lambda: self._render_queue.enqueue(record.id, record.owner_id, generation_settings),
            policy=self._enqueue_policy,
            should_retry=lambda exc: isinstance(exc, QueueEnqueueError),
            label=f"Enqueue run {record.id}",
            sleep=self._sleep,
        )
        enqueued = apply_state(record, transition(state, Enqueued(position)))
        return await self._runs.save(enqueued)

    def estimate_wait_seconds(self, position: int) -> int:
        return self._render_queue.estimate_wait_seconds(position)


__all__ = [
    "MEDICAL_VOICES",
    "PipelineOrchestrator",
    "SubmissionRejected",
    "index_name",
]
