"""SQLAlchemy model for script generation runs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Integer, String, Text, Uuid

from app.domain.models import RunStatus
from app.models.base import Base, JsonColumnType, enum_values


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScriptRun(Base):
    __tablename__ = "script_runs"
    __table_args__ = (
        CheckConstraint(
            "(status = 'failed') = (error_message IS NOT NULL)",
            name="ck_script_runs_failed_has_error",
        ),
        CheckConstraint(
            "queue_position IS NULL OR status = 'script_ready'",
            name="ck_script_runs_queue_requires_ready",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(
        SqlEnum(RunStatus, name="script_run_status", values_callable=enum_values),
        nullable=False,
        default=RunStatus.PROCESSING,
        index=True,
    )

    # run parameters
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    synthesis_style = Column(String(64), nullable=False)
    specialty = Column(String(128), nullable=False)
    target_duration_minutes = Column(Integer, nullable=False, default=25)
    retention_days = Column(Integer, nullable=True)
    document_ids = Column(JsonColumnType, nullable=False, default=list)

    retrieval_index_id = Column(String(255), nullable=True)
    retrieval_index_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Ordered list of {"stage": ..., "output": ...}; a JSON list keeps pipeline order.
    stage_artifacts = Column(JsonColumnType, nullable=False, default=list)
    error_message = Column(Text, nullable=True)
    queue_position = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


__all__ = ["ScriptRun"]
