"""Script generation run endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from app.controllers.dependencies import CurrentOwnerDep, ServicesDep
from app.domain.models import RunParameters, RunRecord, RunStatus
from app.pipelines.script import InvalidTransition, RunSubmission, SubmissionRejected
from app.services.rate_limit import RateLimitExceeded
from app.services.render_queue import QueueEnqueueError
from app.views.common import ErrorResponse, SuccessResponse
from app.views.scripts import ScriptRunAccepted, ScriptRunRequest, ScriptRunResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/scripts",
    tags=["scripts"],
    responses={401: {"model": ErrorResponse}},
)


async def _get_owned_run(
    services: ServicesDep,
    run_id: UUID,
    current_owner: CurrentOwnerDep,
) -> RunRecord:
    """Load a run and make sure the caller owns it."""

    record = await services.runs.get(run_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Run not found",
        )
    if record.owner_id != current_owner.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to access this run",
        )
    return record


def _to_response(services: ServicesDep, record: RunRecord) -> ScriptRunResponse:
    wait = None
    if record.queue_position is not None:
        wait = services.render_queue.estimate_wait_seconds(record.queue_position)
    return ScriptRunResponse(
        id=record.id,
        status=record.status,
        error_message=record.error_message,
        queue_position=record.queue_position,
        estimated_wait_seconds=wait,
        finalized_script=record.finalized_script,
        retrieval_index_id=record.retrieval_index_id,
        completed_stages=record.completed_stages,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post(
    "",
    response_model=ScriptRunAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def submit_script_run(
    payload: ScriptRunRequest,
    current_owner: CurrentOwnerDep,
    services: ServicesDep,
) -> ScriptRunAccepted:
    """Accept a document set and start generating its script in the background."""

    try:
        reserved_at = await services.rate_limiter.check(current_owner.id)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from None

    submission = RunSubmission(
        owner_id=current_owner.id,
        parameters=RunParameters(
            title=payload.title,
            description=payload.description,
            synthesis_style=payload.synthesis_style,
            specialty=payload.specialty,
            target_duration_minutes=payload.target_duration_minutes,
            retention_days=payload.retention_days,
        ),
        document_ids=payload.document_ids,
    )
    try:
        record = await services.orchestrator.submit(submission)
    except SubmissionRejected as exc:
        await services.rate_limiter.release(current_owner.id, reserved_at)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from None

    services.tasks.start(record.id, services.orchestrator.execute(record.id))
    return ScriptRunAccepted(run_id=record.id, status=record.status)


@router.get(
    "/{run_id}",
    response_model=ScriptRunResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_script_run(
    run_id: UUID,
    current_owner: CurrentOwnerDep,
    services: ServicesDep,
) -> ScriptRunResponse:
    """Return the current status of a run."""

    record = await _get_owned_run(services, run_id, current_owner)
    return _to_response(services, record)


@router.post(
    "/{run_id}/enqueue",
    response_model=ScriptRunResponse,
    responses={409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def retry_enqueue(
    run_id: UUID,
    current_owner: CurrentOwnerDep,
    services: ServicesDep,
) -> ScriptRunResponse:
    """Place a finished script on the render queue after an earlier enqueue failed."""

    await _get_owned_run(services, run_id, current_owner)
    try:
        record = await services.orchestrator.retry_enqueue(run_id)
    except InvalidTransition:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Run is not a script_ready run awaiting a queue position",
        ) from None
    except QueueEnqueueError as exc:
        logger.error("Enqueue retry for run %s failed: %s", run_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Render queue unavailable, try again later",
        ) from None
    return _to_response(services, record)


@router.post(
    "/{run_id}/cancel",
    response_model=SuccessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": ErrorResponse}},
)
async def cancel_script_run(
    run_id: UUID,
    current_owner: CurrentOwnerDep,
    services: ServicesDep,
) -> SuccessResponse:
    """Abort a run that is still processing."""

    record = await _get_owned_run(services, run_id, current_owner)
    if record.status != RunStatus.PROCESSING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run is already {record.status.value}",
        )

    if not services.tasks.cancel(run_id):
        # No live task in this process, e.g. after a restart.
        try:
            await services.orchestrator.mark_cancelled(run_id)
        except InvalidTransition:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Run finished before it could be cancelled",
            ) from None

    return SuccessResponse(message="Cancellation requested", data={"runId": str(run_id)})
