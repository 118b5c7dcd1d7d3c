"""Finite-state machine for a script generation run.

A run is always in exactly one of three states:

* ``Processing`` – stages are being executed; carries the artifacts so far.
* ``ScriptReady`` – all four stages succeeded; may later gain a queue position.
* ``Failed`` – a stage (or the caller) aborted the run; carries the error.

``transition`` is a pure function: it never touches the network or the
database, so the orchestration rules can be unit-tested on their own. The
orchestrator applies each transition and then persists the resulting state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from app.domain.models import STAGE_ORDER, RunRecord, RunStatus, StageArtifact, StageName


class InvalidTransition(RuntimeError):
    """Raised when an event is not allowed in the current run state."""


@dataclass(frozen=True)
class Processing:
    artifacts: tuple[tuple[StageName, Any], ...] = ()

    @property
    def next_stage(self) -> StageName | None:
        if len(self.artifacts) >= len(STAGE_ORDER):
            return None
        return STAGE_ORDER[len(self.artifacts)]


@dataclass(frozen=True)
class ScriptReady:
    artifacts: tuple[tuple[StageName, Any], ...]
    queue_position: int | None = None

    @property
    def script(self) -> Any:
        return self.artifacts[-1][1]


@dataclass(frozen=True)
class Failed:
    error: str
    artifacts: tuple[tuple[StageName, Any], ...] = ()


RunState = Union[Processing, ScriptReady, Failed]


@dataclass(frozen=True)
class StageCompleted:
    stage: StageName
    output: Any = field(compare=False)


@dataclass(frozen=True)
class StageFailed:
    stage: StageName
    message: str


@dataclass(frozen=True)
class Enqueued:
    position: int


@dataclass(frozen=True)
class Cancelled:
    message: str = "Run cancelled"


RunEvent = Union[StageCompleted, StageFailed, Enqueued, Cancelled]


def transition(state: RunState, event: RunEvent) -> RunState:
    """Return the state reached by applying ``event`` to ``state``."""

    if isinstance(state, Failed):
        raise InvalidTransition(f"Run already failed; cannot apply {type(event).__name__}")

    if isinstance(state, Processing):
        if isinstance(event, StageCompleted):
            expected = state.next_stage
            if event.stage != expected:
                raise InvalidTransition(
                    f"Stage {event.stage.value} completed out of order (expected {expected.value if expected else 'none'})"
                )
            artifacts = state.artifacts + ((event.stage, event.output),)
            if len(artifacts) == len(STAGE_ORDER):
                return ScriptReady(artifacts=artifacts)
            return Processing(artifacts=artifacts)
        if isinstance(event, StageFailed):
            return Failed(error=event.message, artifacts=state.artifacts)
        if isinstance(event, Cancelled):
            return Failed(error=event.message, artifacts=state.artifacts)
        raise InvalidTransition("Cannot enqueue a run that is still processing")

    # ScriptReady
    if isinstance(event, Enqueued):
        if state.queue_position is not None:
            raise InvalidTransition("Run already has a queue position")
        if event.position < 1:
            raise InvalidTransition("Queue positions are 1-based")
        return ScriptReady(artifacts=state.artifacts, queue_position=event.position)
    raise InvalidTransition(
        f"Run is script_ready; cannot apply {type(event).__name__}"
    )


def state_of(record: RunRecord) -> RunState:
    """Rebuild the machine state from a persisted record."""

    artifacts = tuple((artifact.stage, artifact.output) for artifact in record.stage_artifacts)
    if record.status == RunStatus.FAILED:
        return Failed(error=record.error_message or "", artifacts=artifacts)
    if record.status == RunStatus.SCRIPT_READY:
        return ScriptReady(artifacts=artifacts, queue_position=record.queue_position)
    return Processing(artifacts=artifacts)


def apply_state(record: RunRecord, state: RunState) -> RunRecord:
    """Project a machine state onto a copy of ``record``."""

    artifacts = [StageArtifact(stage=stage, output=output) for stage, output in state.artifacts]
    if isinstance(state, Processing):
        return record.model_copy(
            update={"status": RunStatus.PROCESSING, "stage_artifacts": artifacts}
        )
    if isinstance(state, ScriptReady):
        return record.model_copy(
            update={
                "status": RunStatus.SCRIPT_READY,
                "stage_artifacts": artifacts,
                "queue_position": state.queue_position,
                "error_message": None,
            }
        )
    return record.model_copy(
        update={
            "status": RunStatus.FAILED,
            "stage_artifacts": artifacts,
            "error_message": state.error,
            "queue_position": None,
        }
    )


__all__ = [
    "Cancelled",
    "Enqueued",
    "Failed",
    "InvalidTransition",
    "Processing",
    "RunEvent",
    "RunState",
    "ScriptReady",
    "StageCompleted",
    "StageFailed",
    "apply_state",
    "state_of",
    "transition",
]
