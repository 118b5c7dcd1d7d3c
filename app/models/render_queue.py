"""SQLAlchemy models for the audio render queue."""

from __future__ import annotations

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, Integer, String, Uuid

from app.domain.models import QueueEntryStatus
from app.models.base import Base, JsonColumnType, enum_values
from app.models.script_run import utc_now


class RenderQueueEntry(Base):
    __tablename__ = "render_queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("script_runs.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    owner_id = Column(Integer, nullable=False, index=True)
    position = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(QueueEntryStatus, name="render_queue_status", values_callable=enum_values),
        nullable=False,
        default=QueueEntryStatus.WAITING,
        index=True,
    )
    generation_settings = Column(JsonColumnType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class RenderQueueLock(Base):
    """One row per queue; enqueuers take it FOR UPDATE to serialize positions."""

    __tablename__ = "render_queue_locks"

    name = Column(String(64), primary_key=True)


__all__ = ["RenderQueueEntry", "RenderQueueLock"]
