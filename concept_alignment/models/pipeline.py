"""Pipeline input, progress reporting and result models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .alignment import TesseractCell, VennResult
from .concepts import Concept, MergeLogEntry
from .elements import Element
from .enums import PipelinePhase, RunStatus, StepStatus
from .graph import GraphEdge, GraphNode


class PipelineInput(BaseModel):
    """Everything a run needs: the two corpora."""

    d1_elements: list[Element] = Field(default_factory=list)
    d2_elements: list[Element] = Field(default_factory=list)


class PipelineProgress(BaseModel):
    """Observational snapshot published after every transition and unit of work."""

    phase: PipelinePhase = PipelinePhase.IDLE
    message: str = ""
    percent: int = Field(0, ge=0, le=100)
    counts: dict[str, int] = Field(default_factory=dict)


class PipelineStep(BaseModel):
    """Per-phase diagnostic record.

    ``details`` accumulates one line per batch, merge or scored concept so a
    failed unit can be identified after the fact.
    """

    id: str
    phase: PipelinePhase
    title: str
    status: StepStatus = StepStatus.PENDING
    message: str = "Waiting..."
    progress: int = Field(0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    details: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class PipelineCounters(BaseModel):
    d1_concept_count: int = 0
    d2_concept_count: int = 0
    merged_count: int = 0
    gap_count: int = 0
    orphan_count: int = 0
    failed_batches: int = 0
    scoring_errors: int = 0
    merge_rounds_applied: int = 0


class PipelineResult(BaseModel):
    """Best-effort snapshot returned by every run, successful or not."""

    status: RunStatus = RunStatus.RUNNING
    phase: PipelinePhase = PipelinePhase.IDLE
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    tesseract_cells: list[TesseractCell] = Field(default_factory=list)
    venn_result: Optional[VennResult] = None
    concepts: list[Concept] = Field(default_factory=list)
    merge_log: list[MergeLogEntry] = Field(default_factory=list)
    steps: list[PipelineStep] = Field(default_factory=list)
    counters: PipelineCounters = Field(default_factory=PipelineCounters)

    # Processing metadata
    processing_start: Optional[datetime] = None
    processing_end: Optional[datetime] = None
    stage_durations: dict[str, float] = Field(default_factory=dict)
    errors: list[dict] = Field(default_factory=list)
    warnings: list[dict] = Field(default_factory=list)
