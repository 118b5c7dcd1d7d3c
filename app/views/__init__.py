"""Pydantic schemas used as views in the MVC architecture."""

from .common import ErrorResponse, SuccessResponse
from .scripts import ScriptRunAccepted, ScriptRunRequest, ScriptRunResponse

__all__ = [
    "ErrorResponse",
    "ScriptRunAccepted",
    "ScriptRunRequest",
    "ScriptRunResponse",
    "SuccessResponse",
]
