"""High-level map of the script generation pipeline.

``PipelineOrchestrator`` in ``orchestrator.py`` does the actual work; this
module lists the canonical order so the stage client, the payload builders and
the logs can be cross-referenced:

0. ``index`` – best-effort retrieval index over the run's documents.
1. ``document-overview`` – summarise the corpus.
2. ``content-mapping`` – map topics onto the overview.
3. ``outline-generation`` – build the episode outline from both.
4. ``script-finalization`` – turn the outline into a TTS-ready script.

Afterwards the run is marked ``script_ready`` and joins the render queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from app.domain.models import StageName


@dataclass(frozen=True)
class PipelineStage:
    """Human-readable description of one stage in the script pipeline."""

    order: int
    name: str
    stage: StageName | None
    summary: str


class ScriptGenerationPipeline:
    """Utility wrapper for documenting the `/scripts` flow."""

    _STAGES: List[PipelineStage] = [
        PipelineStage(
            0,
            "Retrieval Index",
            None,
            "Create an index, attach completed uploads; failures only drop retrieval.",
        ),
        PipelineStage(
            1,
            "Document Overview",
            StageName.DOCUMENT_OVERVIEW,
            "Summarise the documents through the retrieval index.",
        ),
        PipelineStage(
            2,
            "Content Mapping",
            StageName.CONTENT_MAPPING,
            "Map the corpus topics using the overview.",
        ),
        PipelineStage(
            3,
            "Outline Generation",
            StageName.OUTLINE_GENERATION,
            "Build the outline from overview, content map and run parameters.",
        ),
        PipelineStage(
            4,
            "Script Finalization",
            StageName.SCRIPT_FINALIZATION,
            "Rewrite the outline into the final multi-speaker script.",
        ),
    ]

    @classmethod
    def describe(cls) -> Iterable[PipelineStage]:
        """Expose the ordered list of stages for debugging and documentation."""

        return tuple(cls._STAGES)

    @classmethod
    def describe_stage(cls, stage: StageName) -> PipelineStage:
        for entry in cls._STAGES:
            if entry.stage is stage:
                return entry
        raise KeyError(stage)


__all__ = ["PipelineStage", "ScriptGenerationPipeline"]
