"""Shared dataclasses for the script generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from app.domain.models import RunParameters


@dataclass
class RunSubmission:
    """A caller's request to generate one script."""

    owner_id: int
    parameters: RunParameters
    document_ids: List[str] = field(default_factory=list)


__all__ = ["RunSubmission"]
