"""Script generation pipeline package.

Modules follow the order in which a run executes:

1. `state` – pure state machine for one run.
2. `payloads` – request bodies for each content stage.
3. `orchestrator` – index setup, the four stages and the render queue handoff.
4. `flow` – human-readable description of the end-to-end stages.
"""

from .flow import PipelineStage, ScriptGenerationPipeline
from .orchestrator import MEDICAL_VOICES, PipelineOrchestrator, SubmissionRejected, index_name
from .payloads import build_stage_payload
from .state import InvalidTransition
from .types import RunSubmission

__all__ = [
    "InvalidTransition",
    "MEDICAL_VOICES",
    "PipelineOrchestrator",
    "PipelineStage",
    "RunSubmission",
    "ScriptGenerationPipeline",
    "SubmissionRejected",
    "build_stage_payload",
    "index_name",
]
