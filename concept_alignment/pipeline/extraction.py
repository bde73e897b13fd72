"""Per-dataset concept extraction.

Each dataset is split into character-budget batches which are sent to the
extraction oracle one at a time, in order. The two datasets run concurrently.
A failed batch is recorded and skipped; only a dataset whose every batch
failed is reported as failed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import structlog

from concept_alignment.models import (
    DatasetTag,
    Element,
    ExtractedConcept,
    ExtractionRequest,
    ExtractionResponse,
)
from concept_alignment.oracles.base import ExtractionOracle
from concept_alignment.pipeline.batcher import batch_by_char_budget
from concept_alignment.pipeline.errors import (
    BatchExtractionError,
    DatasetExtractionError,
    PipelineAbort,
)
from concept_alignment.pipeline.graph_builder import GraphBuilder

logger = structlog.get_logger(__name__)


@dataclass
class BatchOutcome:
    """Result of one extraction batch."""

    dataset: DatasetTag
    index: int
    total: int
    element_count: int
    concepts: list[ExtractedConcept] = field(default_factory=list)
    error: Optional[BatchExtractionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DatasetOutcome:
    """Aggregate result of extracting one dataset."""

    dataset: DatasetTag
    batch_count: int = 0
    concepts: list[ExtractedConcept] = field(default_factory=list)
    failures: list[BatchExtractionError] = field(default_factory=list)


BatchCallback = Callable[[BatchOutcome], None]


def sanitize_concepts(
    dataset: DatasetTag,
    payload: ExtractionResponse,
    batch_element_ids: set[str],
) -> tuple[list[ExtractedConcept], int]:
    """Convert an oracle response into concepts bound to the submitted batch.

    Element ids the batch did not contain are dropped. A concept left without
    any element id is dropped entirely.

    Returns:
        Tuple of (concepts, dropped_reference_count).
    """
    concepts = []
    dropped = 0
    for item in payload.concepts:
        kept = [eid for eid in item.element_ids if eid in batch_element_ids]
        dropped += len(item.element_ids) - len(kept)
        if not kept:
            logger.warning("concept_without_elements_dropped", dataset=dataset.value, label=item.label)
            continue
        concepts.append(
            ExtractedConcept(
                label=item.label,
                description=item.description,
                element_ids=kept,
                dataset=dataset,
            )
        )
    return concepts, dropped


class ExtractionCoordinator:
    """Drives the extraction oracle for both datasets."""

    def __init__(
        self,
        oracle: ExtractionOracle,
        graph: GraphBuilder,
        budget: int,
        should_abort: Callable[[], bool] = lambda: False,
        on_batch: Optional[BatchCallback] = None,
    ):
        self.oracle = oracle
        self.graph = graph
        self.budget = budget
        self.should_abort = should_abort
        self.on_batch = on_batch

    async def extract_dataset(
        self, dataset: DatasetTag, elements: Sequence[Element]
    ) -> DatasetOutcome:
        """Run every batch of one dataset sequentially.

        Raises:
            PipelineAbort: If the abort flag is observed between batches.
            DatasetExtractionError: If there was at least one batch and all failed.
        """
        batches = batch_by_char_budget(elements, self.budget)
        outcome = DatasetOutcome(dataset=dataset, batch_count=len(batches))
        logger.info("extraction_dataset_start", dataset=dataset.value, batches=len(batches))

        for index, batch in enumerate(batches):
            if self.should_abort():
                raise PipelineAbort()

            result = await self._run_batch(dataset, index, len(batches), batch)

            # Results arriving after an abort are discarded
            if self.should_abort():
                raise PipelineAbort()

            if result.ok:
                for concept in result.concepts:
                    self.graph.add_premerge_concept(concept)
                self.graph.arena.raw_concepts[dataset].extend(result.concepts)
                outcome.concepts.extend(result.concepts)
            else:
                outcome.failures.append(result.error)

            if self.on_batch:
                self.on_batch(result)

        if batches and len(outcome.failures) == len(batches):
            raise DatasetExtractionError(dataset.value, outcome.failures)

        logger.info(
            "extraction_dataset_complete",
            dataset=dataset.value,
            concepts=len(outcome.concepts),
            failed_batches=len(outcome.failures),
        )
        return outcome

    async def _run_batch(
        self, dataset: DatasetTag, index: int, total: int, batch: list[Element]
    ) -> BatchOutcome:
        outcome = BatchOutcome(dataset=dataset, index=index, total=total, element_count=len(batch))
        request = ExtractionRequest(dataset_tag=dataset, elements=batch)

        try:
            response = await self.oracle.extract(request)
        except Exception as e:
            outcome.error = BatchExtractionError(dataset.value, index, str(e))
            logger.warning("extraction_batch_failed", dataset=dataset.value, batch=index + 1, error=str(e))
            return outcome

        if not response.success:
            outcome.error = BatchExtractionError(dataset.value, index, response.error or "Unknown error")
            logger.warning(
                "extraction_batch_failed",
                dataset=dataset.value,
                batch=index + 1,
                error=response.error,
            )
            return outcome

        concepts, dropped = sanitize_concepts(dataset, response, {el.id for el in batch})
        if dropped:
            logger.warning(
                "extraction_foreign_ids_dropped",
                dataset=dataset.value,
                batch=index + 1,
                dropped=dropped,
            )
        outcome.concepts = concepts
        logger.debug("extraction_batch_complete", dataset=dataset.value, batch=index + 1, concepts=len(concepts))
        return outcome

    async def extract_both(
        self, d1_elements: Sequence[Element], d2_elements: Sequence[Element]
    ) -> dict[DatasetTag, "DatasetOutcome | BaseException"]:
        """Extract both datasets concurrently and wait for both to settle.

        Returns:
            Mapping of dataset to its outcome, or to the exception that ended it.
        """
        results = await asyncio.gather(
            self.extract_dataset(DatasetTag.D1, d1_elements),
            self.extract_dataset(DatasetTag.D2, d2_elements),
            return_exceptions=True,
        )
        return {DatasetTag.D1: results[0], DatasetTag.D2: results[1]}
