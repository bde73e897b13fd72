"""
Response schemas for the API.

These define the output structure for API endpoints.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from concept_alignment.models import PipelineCounters, PipelineProgress, PipelineStep


# =============================================================================
# Run Responses
# =============================================================================

class StartRunResponse(BaseModel):
    """Response after starting a run."""
    run_id: str = Field(..., description="Unique identifier for this run")
    status: Literal["queued", "running", "completed", "error", "aborted"] = "queued"
    started_at: datetime = Field(default_factory=datetime.utcnow)


class RunStatusResponse(BaseModel):
    """Live progress and per-phase steps of a run."""
    run_id: str
    status: str
    progress: PipelineProgress
    steps: list[PipelineStep] = Field(default_factory=list)
    counters: Optional[PipelineCounters] = None
    errors: list[dict] = Field(default_factory=list)


class AbortResponse(BaseModel):
    """Response after requesting an abort."""
    run_id: str
    aborted: bool
    message: str


class RunResultsResponse(BaseModel):
    """Final (or partial) collections of a finished run."""
    run_id: str
    status: str
    results: dict[str, Any]
