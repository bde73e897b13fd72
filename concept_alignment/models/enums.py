"""Enumeration types for the alignment pipeline models."""

from enum import Enum


class DatasetTag(str, Enum):
    """Provenance of an element: the requirements corpus (D1) or the implementation corpus (D2)."""

    D1 = "d1"
    D2 = "d2"

    @property
    def source_dataset(self) -> str:
        """Dataset name used on graph nodes."""
        return "dataset1" if self is DatasetTag.D1 else "dataset2"

    @property
    def edge_type(self) -> "EdgeType":
        """Edge type linking an element of this dataset to a concept."""
        return EdgeType.DEFINES if self is DatasetTag.D1 else EdgeType.IMPLEMENTS


class NodeType(str, Enum):
    """Kind of graph node."""

    ELEMENT = "element"
    CONCEPT = "concept"


class ConceptTag(str, Enum):
    """Lifecycle tag carried by concept nodes."""

    PREMERGE = "premerge"
    MERGED = "merged"
    GAP = "gap"          # D1-only survivor
    ORPHAN = "orphan"    # D2-only survivor


class EdgeType(str, Enum):
    """Relationship between an element node and a concept node."""

    DEFINES = "defines"          # D1 element -> concept
    IMPLEMENTS = "implements"    # D2 element -> concept


class VennCategory(str, Enum):
    """Three-way coverage partition."""

    UNIQUE_D1 = "unique_d1"
    ALIGNED = "aligned"
    UNIQUE_D2 = "unique_d2"


class Criticality(str, Enum):
    """Severity attached to a Venn item."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    INFO = "info"


class PipelinePhase(str, Enum):
    """Phases of the orchestrator state machine."""

    IDLE = "idle"
    CREATING_NODES = "creating_nodes"
    EXTRACTING_D1 = "extracting_d1"
    EXTRACTING_D2 = "extracting_d2"
    MERGING_CONCEPTS = "merging_concepts"
    BUILDING_GRAPH = "building_graph"
    BUILDING_TESSERACT = "building_tesseract"
    GENERATING_VENN = "generating_venn"
    COMPLETED = "completed"
    ERROR = "error"


class StepStatus(str, Enum):
    """Status of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(str, Enum):
    """Overall outcome of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


class StreamEventType(str, Enum):
    """Event names recognized in the oracle streaming protocol."""

    PROGRESS = "progress"
    CONCEPT = "concept"
    CELL = "cell"
    RESULT = "result"
    DONE = "done"
    ERROR = "error"
