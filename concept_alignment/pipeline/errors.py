"""Error taxonomy for the alignment pipeline.

Per-unit errors (one batch, one scored concept) are recorded and never
propagate out of their loop. Phase-level errors propagate to the orchestrator,
which moves to the error state and still returns the partial arena.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every pipeline error."""

    stage: str = "pipeline"


class OracleError(PipelineError):
    """Transport-level failure talking to an oracle (HTTP status, bad JSON, timeout)."""

    stage = "oracle"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BatchExtractionError(PipelineError):
    """One extraction batch failed. Non-fatal: sibling batches continue."""

    stage = "extraction"

    def __init__(self, dataset: str, batch_index: int, message: str):
        super().__init__(f"{dataset} batch {batch_index + 1}: {message}")
        self.dataset = dataset
        self.batch_index = batch_index
        self.reason = message


class DatasetExtractionError(PipelineError):
    """Every batch of one dataset failed. The dataset contributes zero concepts."""

    stage = "extraction"

    def __init__(self, dataset: str, failures: list[BatchExtractionError]):
        detail = "; ".join(str(f) for f in failures) or "no batches"
        super().__init__(f"All {len(failures)} {dataset} batches failed: {detail}")
        self.dataset = dataset
        self.failures = failures


class MergeOracleError(PipelineError):
    """The merge oracle produced no usable round result. Fatal to the run."""

    stage = "merge"


class ConservationError(PipelineError):
    """A merge round changed the multiset of element ids held by active concepts."""

    stage = "merge"


class StreamProtocolError(PipelineError):
    """A streamed block could not be decoded. The block is skipped."""

    stage = "stream"


class ScoringItemError(PipelineError):
    """Scoring one concept failed. Counted, never fatal."""

    stage = "tesseract"

    def __init__(self, concept_label: str, message: str):
        super().__init__(f"{concept_label}: {message}")
        self.concept_label = concept_label


class VennOracleError(PipelineError):
    """The venn oracle failed or returned no result."""

    stage = "venn"


class PipelineAbort(PipelineError):
    """Cooperative cancellation was observed."""

    stage = "abort"

    def __init__(self, message: str = "Aborted"):
        super().__init__(message)


class UnknownError(PipelineError):
    """Catch-all wrapper for unexpected exceptions."""

    stage = "unknown"
