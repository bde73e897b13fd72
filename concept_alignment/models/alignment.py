"""Alignment scoring outputs: tesseract cells and the Venn partition."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enums import Criticality, VennCategory
from .graph import new_graph_id


class TesseractCell(BaseModel):
    """Polarity and rationale recorded for one scored concept."""

    id: str = Field(default_factory=new_graph_id)
    concept_id: str
    concept_label: str
    concept_description: str = ""
    polarity: float = Field(ge=-1.0, le=1.0)
    rationale: str = ""
    d1_element_ids: list[str] = Field(default_factory=list)
    d2_element_ids: list[str] = Field(default_factory=list)


class VennItem(BaseModel):
    """One categorized concept of the Venn result."""

    id: str = Field(default_factory=new_graph_id)
    label: str
    category: VennCategory
    criticality: Criticality
    evidence: str = ""
    source_element: str = ""
    polarity: float
    description: str = ""


class VennSummary(BaseModel):
    """Coverage statistics derived from the partition."""

    total_d1_coverage: float = Field(0.0, ge=0.0, le=100.0)
    total_d2_coverage: float = Field(0.0, ge=0.0, le=100.0)
    alignment_score: float = Field(0.0, ge=0.0)
    gaps: int = 0
    orphans: int = 0
    aligned: int = 0
    avg_polarity: float = 0.0


class VennResult(BaseModel):
    """Final three-way partition plus summary."""

    unique_to_d1: list[VennItem] = Field(default_factory=list)
    aligned: list[VennItem] = Field(default_factory=list)
    unique_to_d2: list[VennItem] = Field(default_factory=list)
    summary: VennSummary = Field(default_factory=VennSummary)
    generated_at: Optional[datetime] = None
