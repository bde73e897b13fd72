"""Tesseract scoring and the Venn partition.

Every final concept is scored on its own by the scoring oracle; a failure is
counted and the loop moves on. The Venn partition is then derived locally from
the final concept tags, optionally widened by extra D2-only items from the
venn oracle.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from concept_alignment.models import (
    Concept,
    Criticality,
    DatasetTag,
    Element,
    ScoringConcept,
    ScoringElement,
    ScoringRequest,
    TesseractCell,
    VennCategory,
    VennCellRef,
    VennConceptRef,
    VennItem,
    VennItemPayload,
    VennOraclePayload,
    VennRequest,
    VennResult,
    VennSummary,
)
from concept_alignment.oracles.base import ScoringOracle, VennOracle
from concept_alignment.pipeline.errors import (
    OracleError,
    PipelineAbort,
    ScoringItemError,
    VennOracleError,
)

logger = structlog.get_logger(__name__)


def criticality_for_polarity(polarity: float) -> Criticality:
    """Severity of an aligned concept from its polarity."""
    if polarity < 0:
        return Criticality.CRITICAL
    if polarity < 0.3:
        return Criticality.MAJOR
    if polarity < 0.7:
        return Criticality.MINOR
    return Criticality.INFO


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


# =============================================================================
# Tesseract
# =============================================================================

@dataclass
class TesseractOutcome:
    cells: list[TesseractCell] = field(default_factory=list)
    errors: list[ScoringItemError] = field(default_factory=list)


ConceptCallback = Callable[[int, int, Concept, Optional[TesseractCell], Optional[ScoringItemError]], None]


class TesseractBuilder:
    """Scores final concepts one at a time."""

    def __init__(self, oracle: ScoringOracle, elements: dict[DatasetTag, dict[str, Element]]):
        self.oracle = oracle
        self.elements = elements

    def build_request(self, concept: Concept) -> ScoringRequest:
        def expand(dataset: DatasetTag, ids: list[str]) -> list[ScoringElement]:
            found = []
            for element_id in _unique(ids):
                element = self.elements[dataset].get(element_id)
                if element is not None:
                    found.append(ScoringElement(id=element.id, label=element.label, content=element.content))
            return found

        return ScoringRequest(
            concept=ScoringConcept(
                id=concept.id,
                label=concept.label,
                description=concept.description,
                d1_elements=expand(DatasetTag.D1, concept.d1_ids),
                d2_elements=expand(DatasetTag.D2, concept.d2_ids),
            )
        )

    async def score_concept(self, concept: Concept) -> TesseractCell:
        """Score a single concept and return its cell.

        Raises:
            ScoringItemError: If the oracle fails or returns no usable cell.
        """
        try:
            response = await self.oracle.score(self.build_request(concept))
        except (OracleError, ValidationError) as e:
            raise ScoringItemError(concept.label, str(e)) from e

        if not response.success:
            reason = response.error or "; ".join(response.errors) or "Unknown error"
            raise ScoringItemError(concept.label, reason)
        if not response.cells:
            raise ScoringItemError(concept.label, "No cells returned")

        scored = response.cells[0]
        return TesseractCell(
            concept_id=concept.id,
            concept_label=concept.label,
            concept_description=concept.description,
            polarity=scored.polarity,
            rationale=scored.rationale,
            d1_element_ids=_unique(concept.d1_ids),
            d2_element_ids=_unique(concept.d2_ids),
        )

    async def build(
        self,
        concepts: list[Concept],
        cells: list[TesseractCell],
        should_abort: Callable[[], bool] = lambda: False,
        on_concept: Optional[ConceptCallback] = None,
    ) -> TesseractOutcome:
        """Score ``concepts`` in order, appending each cell to ``cells`` as it arrives."""
        outcome = TesseractOutcome()
        total = len(concepts)

        for index, concept in enumerate(concepts):
            if should_abort():
                raise PipelineAbort()

            cell: Optional[TesseractCell] = None
            error: Optional[ScoringItemError] = None
            try:
                cell = await self.score_concept(concept)
            except ScoringItemError as e:
                error = e
            except Exception as e:
                error = ScoringItemError(concept.label, f"{type(e).__name__}: {e}")

            if should_abort():
                raise PipelineAbort()

            if cell is not None:
                cells.append(cell)
                outcome.cells.append(cell)
            else:
                outcome.errors.append(error)
                logger.warning("scoring_concept_failed", concept=concept.label, error=str(error))

            if on_concept:
                on_concept(index, total, concept, cell, error)

        logger.info("tesseract_complete", cells=len(outcome.cells), errors=len(outcome.errors))
        return outcome


# =============================================================================
# Venn
# =============================================================================

class VennBuilder:
    """Derives the three-way partition and its summary."""

    def __init__(self, oracle: Optional[VennOracle] = None, default_aligned_polarity: float = 0.5):
        self.oracle = oracle
        self.default_aligned_polarity = default_aligned_polarity

    def partition(
        self,
        concepts: list[Concept],
        cells: list[TesseractCell],
        extra_d2: Optional[list[VennItemPayload]] = None,
    ) -> VennResult:
        """Categorize final concepts into unique-to-D1, aligned and unique-to-D2.

        Aligned polarity comes from the concept's cell, or the configured default
        when it has none. Extra D2 items are appended only when their label is not
        already present among the D2-only items.
        """
        cells_by_concept = {cell.concept_id: cell for cell in cells}
        result = VennResult(generated_at=datetime.now())

        for concept in concepts:
            if concept.is_aligned:
                cell = cells_by_concept.get(concept.id)
                polarity = cell.polarity if cell else self.default_aligned_polarity
                result.aligned.append(
                    VennItem(
                        label=concept.label,
                        category=VennCategory.ALIGNED,
                        criticality=criticality_for_polarity(polarity),
                        evidence=(cell.rationale if cell and cell.rationale else concept.description),
                        source_element=concept.d1_ids[0],
                        polarity=polarity,
                        description=(
                            f"{len(concept.d1_ids)} D1 element(s) matched with "
                            f"{len(concept.d2_ids)} D2 element(s)."
                        ),
                    )
                )
            elif concept.has_d1:
                result.unique_to_d1.append(
                    VennItem(
                        label=concept.label,
                        category=VennCategory.UNIQUE_D1,
                        criticality=Criticality.MAJOR,
                        evidence=concept.description,
                        source_element=concept.d1_ids[0],
                        polarity=-1.0,
                        description=f"Not implemented in D2: {concept.description}",
                    )
                )
            elif concept.has_d2:
                result.unique_to_d2.append(self._orphan_item(concept.label, concept.description, concept.d2_ids[0]))

        seen_labels = {item.label for item in result.unique_to_d2}
        for extra in extra_d2 or []:
            if extra.label in seen_labels:
                continue
            seen_labels.add(extra.label)
            result.unique_to_d2.append(
                self._orphan_item(extra.label, extra.description or extra.evidence, "")
            )

        result.summary = self.summarize(result)
        return result

    @staticmethod
    def _orphan_item(label: str, description: str, source_element: str) -> VennItem:
        return VennItem(
            label=label,
            category=VennCategory.UNIQUE_D2,
            criticality=Criticality.INFO,
            evidence=description,
            source_element=source_element,
            polarity=0.0,
            description=f"Not specified in D1: {description}",
        )

    @staticmethod
    def summarize(result: VennResult) -> VennSummary:
        aligned = len(result.aligned)
        gaps = len(result.unique_to_d1)
        orphans = len(result.unique_to_d2)

        total_d1 = aligned + gaps
        total_d2 = aligned + orphans
        avg_polarity = sum(item.polarity for item in result.aligned) / aligned if aligned else 0.0

        d1_coverage = aligned / total_d1 * 100 if total_d1 else 0.0
        d2_coverage = aligned / total_d2 * 100 if total_d2 else 0.0
        denominator = max(total_d1, total_d2)
        score = aligned / denominator * 100 * (0.5 + 0.5 * avg_polarity) if denominator else 0.0

        return VennSummary(
            total_d1_coverage=round(d1_coverage, 2),
            total_d2_coverage=round(d2_coverage, 2),
            alignment_score=round(max(score, 0.0), 2),
            gaps=gaps,
            orphans=orphans,
            aligned=aligned,
            avg_polarity=round(avg_polarity, 4),
        )

    def build_request(self, concepts: list[Concept], cells: list[TesseractCell]) -> VennRequest:
        def ref(c: Concept) -> VennConceptRef:
            return VennConceptRef(
                id=c.id, label=c.label, description=c.description, d1_ids=c.d1_ids, d2_ids=c.d2_ids
            )

        return VennRequest(
            merged_concepts=[ref(c) for c in concepts if c.is_aligned],
            unmerged_d1=[ref(c) for c in concepts if c.has_d1 and not c.has_d2],
            unmerged_d2=[ref(c) for c in concepts if c.has_d2 and not c.has_d1],
            tesseract_cells=[
                VennCellRef(
                    concept_id=cell.concept_id,
                    concept_label=cell.concept_label,
                    polarity=cell.polarity,
                    rationale=cell.rationale,
                )
                for cell in cells
            ],
        )

    async def fetch_oracle_payload(
        self,
        concepts: list[Concept],
        cells: list[TesseractCell],
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> Optional[VennOraclePayload]:
        """Ask the venn oracle for its own partition.

        Returns:
            The payload, or None when no venn oracle is configured.

        Raises:
            VennOracleError: On an error event, a transport failure, a malformed
                payload or a stream that ends without a result.
        """
        if self.oracle is None:
            return None

        payload: Optional[VennOraclePayload] = None
        try:
            async for event in self.oracle.generate(self.build_request(concepts, cells)):
                if event.event == "progress":
                    if on_progress and event.message:
                        on_progress(event.message)
                elif event.event == "result":
                    payload = VennOraclePayload.model_validate(event.data)
                elif event.event == "error":
                    raise VennOracleError(event.message)
        except ValidationError as e:
            raise VennOracleError(f"Malformed venn result: {e}") from e
        except OracleError as e:
            raise VennOracleError(str(e)) from e

        if payload is None:
            raise VennOracleError("No result received from Venn generation")
        return payload
