"""Request bodies sent to each content stage."""

from __future__ import annotations

from typing import Any, Dict

from app.domain.models import RunRecord, StageName


def build_stage_payload(stage: StageName, record: RunRecord) -> Dict[str, Any]:
    """Thread the upstream artifacts ``stage`` depends on into its request body."""

    artifacts = record.artifacts
    payload: Dict[str, Any] = {
        "ownerId": record.owner_id,
        "runId": str(record.id),
        "retrievalIndexId": record.retrieval_index_id,
    }

    if stage is StageName.CONTENT_MAPPING:
        payload["overview"] = artifacts[StageName.DOCUMENT_OVERVIEW]
    elif stage is StageName.OUTLINE_GENERATION:
        params = record.parameters
        payload.update(
            {
                "overview": artifacts[StageName.DOCUMENT_OVERVIEW],
                "contentMap": artifacts[StageName.CONTENT_MAPPING],
                "specialty": params.specialty,
                "title": params.title,
                "description": params.description,
                "style": params.synthesis_style,
                "targetDuration": params.target_duration_minutes,
            }
        )
    elif stage is StageName.SCRIPT_FINALIZATION:
        payload["script"] = artifacts[StageName.OUTLINE_GENERATION]
        payload["optimizeForTTS"] = True

    return payload


__all__ = ["build_stage_payload"]
