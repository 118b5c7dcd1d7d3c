"""SQLAlchemy model for uploaded source documents."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime
from sqlalchemy import Enum as SqlEnum
from sqlalchemy import ForeignKey, String, Text, func

from app.models.base import Base, enum_values


class UploadStatus(str, Enum):
    """Provider upload state of a document."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceDocument(Base):
    __tablename__ = "source_documents"

    id = Column(String(64), primary_key=True)
    owner_id = Column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(Text, nullable=False)
    file_ref = Column(String(255), nullable=True)
    upload_status = Column(
        SqlEnum(UploadStatus, name="upload_status", values_callable=enum_values),
        nullable=False,
        default=UploadStatus.PROCESSING,
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


__all__ = ["SourceDocument", "UploadStatus"]
