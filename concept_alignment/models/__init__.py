"""Pydantic data models for the alignment pipeline."""

from .enums import (
    ConceptTag,
    Criticality,
    DatasetTag,
    EdgeType,
    NodeType,
    PipelinePhase,
    RunStatus,
    StepStatus,
    StreamEventType,
    VennCategory,
)
from .elements import Element
from .concepts import (
    Concept,
    ExtractedConcept,
    MergeLogEntry,
    TombstoneError,
    resolve_concept,
)
from .graph import GraphEdge, GraphNode, new_graph_id
from .alignment import TesseractCell, VennItem, VennResult, VennSummary
from .oracle import (
    ExtractedConceptPayload,
    ExtractionRequest,
    ExtractionResponse,
    MergeConceptRef,
    MergeOraclePayload,
    MergeProposal,
    MergeRequest,
    ScoredCell,
    ScoringConcept,
    ScoringElement,
    ScoringRequest,
    ScoringResponse,
    VennCellRef,
    VennConceptRef,
    VennItemPayload,
    VennOraclePayload,
    VennRequest,
)
from .streaming import (
    DoneEvent,
    ErrorEvent,
    ItemEvent,
    ProgressEvent,
    ResultEvent,
    StreamEvent,
)
from .pipeline import (
    PipelineCounters,
    PipelineInput,
    PipelineProgress,
    PipelineResult,
    PipelineStep,
)

__all__ = [
    # Enums
    "ConceptTag",
    "Criticality",
    "DatasetTag",
    "EdgeType",
    "NodeType",
    "PipelinePhase",
    "RunStatus",
    "StepStatus",
    "StreamEventType",
    "VennCategory",
    # Elements & concepts
    "Element",
    "Concept",
    "ExtractedConcept",
    "MergeLogEntry",
    "TombstoneError",
    "resolve_concept",
    # Graph
    "GraphNode",
    "GraphEdge",
    "new_graph_id",
    # Alignment
    "TesseractCell",
    "VennItem",
    "VennResult",
    "VennSummary",
    # Oracle contracts
    "ExtractionRequest",
    "ExtractionResponse",
    "ExtractedConceptPayload",
    "MergeConceptRef",
    "MergeRequest",
    "MergeProposal",
    "MergeOraclePayload",
    "ScoringElement",
    "ScoringConcept",
    "ScoringRequest",
    "ScoredCell",
    "ScoringResponse",
    "VennConceptRef",
    "VennCellRef",
    "VennRequest",
    "VennItemPayload",
    "VennOraclePayload",
    # Stream events
    "ProgressEvent",
    "ItemEvent",
    "ResultEvent",
    "DoneEvent",
    "ErrorEvent",
    "StreamEvent",
    # Pipeline
    "PipelineInput",
    "PipelineProgress",
    "PipelineStep",
    "PipelineCounters",
    "PipelineResult",
]
