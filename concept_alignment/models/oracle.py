"""Request/response contracts for the four oracle collaborators.

Field names follow the wire format (camelCase) through aliases; the Python side
uses snake_case. Every payload coming back from an oracle is validated here
before the pipeline touches it.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .elements import Element
from .enums import DatasetTag


class WireModel(BaseModel):
    """Base for oracle payloads: accept both field names and aliases, ignore extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Extraction oracle
# =============================================================================

class ExtractionRequest(WireModel):
    dataset_tag: DatasetTag = Field(alias="datasetTag")
    elements: list[Element]


class ExtractedConceptPayload(WireModel):
    label: str = Field(min_length=1)
    description: str = ""
    element_ids: list[str] = Field(default_factory=list, alias="elementIds")


class ExtractionResponse(WireModel):
    success: bool
    concepts: list[ExtractedConceptPayload] = Field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Merge oracle (streamed)
# =============================================================================

class MergeConceptRef(WireModel):
    id: str
    label: str
    description: str = ""


class MergeRequest(WireModel):
    concepts: list[MergeConceptRef]
    round: int = Field(ge=1)
    total_rounds: int = Field(ge=1, alias="totalRounds")
    criteria: str = ""
    target_count: Optional[int] = Field(None, alias="targetCount")


class MergeProposal(WireModel):
    source_ids: list[str] = Field(default_factory=list, alias="sourceIds")
    merged_label: str = Field(alias="mergedLabel")
    merged_description: str = Field("", alias="mergedDescription")


class MergeOraclePayload(WireModel):
    merges: list[MergeProposal] = Field(default_factory=list)


# =============================================================================
# Scoring oracle
# =============================================================================

class ScoringElement(WireModel):
    id: str
    label: str = ""
    content: str = ""


class ScoringConcept(WireModel):
    id: str
    label: str
    description: str = ""
    d1_elements: list[ScoringElement] = Field(default_factory=list, alias="d1Elements")
    d2_elements: list[ScoringElement] = Field(default_factory=list, alias="d2Elements")


class ScoringRequest(WireModel):
    concept: ScoringConcept


class ScoredCell(WireModel):
    concept_label: str = Field(alias="conceptLabel")
    polarity: float
    rationale: str = ""

    @field_validator("polarity")
    @classmethod
    def clamp_polarity(cls, value: float) -> float:
        return max(-1.0, min(1.0, value))


class ScoringResponse(WireModel):
    success: bool
    cells: list[ScoredCell] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    error: Optional[str] = None


# =============================================================================
# Venn oracle (streamed)
# =============================================================================

class VennConceptRef(WireModel):
    id: str
    label: str
    description: str = ""
    d1_ids: list[str] = Field(default_factory=list, alias="d1Ids")
    d2_ids: list[str] = Field(default_factory=list, alias="d2Ids")


class VennCellRef(WireModel):
    concept_id: str = Field(alias="conceptId")
    concept_label: str = Field(alias="conceptLabel")
    polarity: float
    rationale: str = ""


class VennRequest(WireModel):
    merged_concepts: list[VennConceptRef] = Field(default_factory=list, alias="mergedConcepts")
    unmerged_d1: list[VennConceptRef] = Field(default_factory=list, alias="unmergedD1")
    unmerged_d2: list[VennConceptRef] = Field(default_factory=list, alias="unmergedD2")
    tesseract_cells: list[VennCellRef] = Field(default_factory=list, alias="tesseractCells")


class VennItemPayload(WireModel):
    label: str = Field(min_length=1)
    description: str = ""
    evidence: str = ""
    polarity: Optional[float] = None


class VennOraclePayload(WireModel):
    unique_to_d1: list[VennItemPayload] = Field(default_factory=list)
    aligned: list[VennItemPayload] = Field(default_factory=list)
    unique_to_d2: list[VennItemPayload] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)
