"""Pipeline orchestration module."""

from .errors import (
    BatchExtractionError,
    ConservationError,
    DatasetExtractionError,
    MergeOracleError,
    OracleError,
    PipelineAbort,
    PipelineError,
    ScoringItemError,
    StreamProtocolError,
    UnknownError,
    VennOracleError,
)
from .orchestrator import PipelineOrchestrator, ResultSink, generate_run_id

__all__ = [
    "PipelineOrchestrator",
    "ResultSink",
    "generate_run_id",
    "PipelineError",
    "OracleError",
    "BatchExtractionError",
    "DatasetExtractionError",
    "MergeOracleError",
    "ConservationError",
    "StreamProtocolError",
    "ScoringItemError",
    "VennOracleError",
    "PipelineAbort",
    "UnknownError",
]
