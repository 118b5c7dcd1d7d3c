"""SQLAlchemy models for the MVC architecture."""

from .base import Base
from .render_queue import RenderQueueEntry, RenderQueueLock  # noqa: F401
from .script_run import ScriptRun  # noqa: F401
from .source_document import SourceDocument, UploadStatus  # noqa: F401
from .user import User, UserStatus  # noqa: F401

__all__ = [
    "Base",
    "User",
    "UserStatus",
    "SourceDocument",
    "UploadStatus",
    "ScriptRun",
    "RenderQueueEntry",
    "RenderQueueLock",
]
