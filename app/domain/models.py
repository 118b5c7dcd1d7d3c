from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    PROCESSING = "processing"
    SCRIPT_READY = "script_ready"
    FAILED = "failed"


class QueueEntryStatus(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    DONE = "done"


ACTIVE_QUEUE_STATUSES = (QueueEntryStatus.WAITING, QueueEntryStatus.PROCESSING)


class StageName(str, Enum):
    """The four content stages, in pipeline order."""

    DOCUMENT_OVERVIEW = "document-overview"
    CONTENT_MAPPING = "content-mapping"
    OUTLINE_GENERATION = "outline-generation"
    SCRIPT_FINALIZATION = "script-finalization"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self) + 1


STAGE_ORDER: tuple[StageName, ...] = (
    StageName.DOCUMENT_OVERVIEW,
    StageName.CONTENT_MAPPING,
    StageName.OUTLINE_GENERATION,
    StageName.SCRIPT_FINALIZATION,
)


class RunParameters(BaseModel):
    """Caller-supplied knobs forwarded to the outline stage."""

    title: str
    description: Optional[str] = None
    synthesis_style: str
    specialty: str
    target_duration_minutes: int = 25
    retention_days: Optional[int] = None


class StageArtifact(BaseModel):
    """Output of one completed stage."""

    stage: StageName
    output: Any


class RunRecord(BaseModel):
    """Domain model for one script generation run"""

    id: UUID
    owner_id: int
    status: RunStatus = RunStatus.PROCESSING
    parameters: RunParameters
    document_ids: list[str] = Field(default_factory=list)
    retrieval_index_id: Optional[str] = None
    retrieval_index_expires_at: Optional[datetime] = None
    stage_artifacts: list[StageArtifact] = Field(default_factory=list)
    error_message: Optional[str] = None
    queue_position: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def artifacts(self) -> dict[StageName, Any]:
        """Completed stage outputs keyed by stage, in pipeline order."""

        return {artifact.stage: artifact.output for artifact in self.stage_artifacts}

    @property
    def completed_stages(self) -> list[StageName]:
        return [artifact.stage for artifact in self.stage_artifacts]

    @property
    def finalized_script(self) -> Any:
        if self.status != RunStatus.SCRIPT_READY:
            return None
        return self.artifacts.get(StageName.SCRIPT_FINALIZATION)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.SCRIPT_READY, RunStatus.FAILED)


class QueueEntry(BaseModel):
    """Domain model for a render queue entry"""

    run_id: UUID
    owner_id: int
    position: int
    status: QueueEntryStatus = QueueEntryStatus.WAITING
    generation_settings: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class SourceDocument(BaseModel):
    """Uploaded source document as seen by the orchestrator"""

    id: str
    owner_id: int
    title: str
    file_ref: Optional[str] = None
    upload_status: str = "processing"

    class Config:
        from_attributes = True

    @property
    def is_ready(self) -> bool:
        return self.upload_status == "completed" and bool(self.file_ref)


class Owner(BaseModel):
    """Identity of a user allowed to submit runs"""

    id: int
    email: str
    status: str = "active"

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        return self.status == "active"
