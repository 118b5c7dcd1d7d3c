from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.domain.models import RunStatus, StageName


class ScriptRunRequest(BaseModel):
    """Request schema for submitting a script generation run."""

    title: str = Field(..., min_length=1, max_length=255, description="Episode title")
    description: Optional[str] = Field(None, max_length=2000)
    synthesis_style: str = Field(
        ..., min_length=1, max_length=64, alias="synthesisStyle",
        description="Conversation style forwarded to the outline stage",
    )
    specialty: str = Field(..., min_length=1, max_length=128, description="Medical specialty")
    document_ids: List[str] = Field(
        ..., min_length=1, alias="documentIds",
        description="Uploaded source documents to build the script from",
    )
    target_duration_minutes: int = Field(
        25, ge=1, le=180, alias="targetDurationMinutes",
    )
    retention_days: Optional[int] = Field(
        None, ge=1, le=365, alias="retentionDays",
        description="How long the retrieval index is kept before the reaper may delete it",
    )

    class Config:
        populate_by_name = True
        str_strip_whitespace = True


class ScriptRunAccepted(BaseModel):
    """Acknowledgement returned when a run is accepted for processing."""

    run_id: UUID = Field(..., alias="runId")
    status: RunStatus

    class Config:
        populate_by_name = True


class ScriptRunResponse(BaseModel):
    """Current state of a run as seen by its owner."""

    id: UUID
    status: RunStatus
    error_message: Optional[str] = Field(None, alias="errorMessage")
    queue_position: Optional[int] = Field(None, alias="queuePosition")
    estimated_wait_seconds: Optional[int] = Field(None, alias="estimatedWaitSeconds")
    finalized_script: Optional[Any] = Field(None, alias="finalizedScript")
    retrieval_index_id: Optional[str] = Field(None, alias="retrievalIndexId")
    completed_stages: List[StageName] = Field(default_factory=list, alias="completedStages")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True
