"""Unit tests for per-dataset concept extraction."""

import asyncio

import pytest

from concept_alignment.models import (
    ConceptTag,
    DatasetTag,
    ExtractedConceptPayload,
    ExtractionRequest,
    ExtractionResponse,
)
from concept_alignment.oracles.base import ExtractionOracle
from concept_alignment.pipeline.arena import PipelineArena
from concept_alignment.pipeline.errors import DatasetExtractionError, OracleError, PipelineAbort
from concept_alignment.pipeline.extraction import ExtractionCoordinator, sanitize_concepts
from concept_alignment.pipeline.graph_builder import GraphBuilder


@pytest.fixture
def graph(element_factory):
    builder = GraphBuilder(PipelineArena())
    builder.create_element_nodes(DatasetTag.D1, [element_factory(f"r{i}", 40) for i in range(1, 5)])
    builder.create_element_nodes(DatasetTag.D2, [element_factory(f"f{i}", 40) for i in range(1, 3)])
    return builder


def _elements(graph, dataset):
    return list(graph.arena.elements[dataset].values())


class TestSanitizeConcepts:
    """Tests for sanitize_concepts."""

    def test_foreign_ids_are_dropped(self):
        response = ExtractionResponse(
            success=True,
            concepts=[
                ExtractedConceptPayload(label="Auth", element_ids=["r1", "r9"]),
                ExtractedConceptPayload(label="Ghost", element_ids=["r9"]),
            ],
        )
        concepts, dropped = sanitize_concepts(DatasetTag.D1, response, {"r1", "r2"})

        assert [c.label for c in concepts] == ["Auth"]
        assert concepts[0].element_ids == ["r1"]
        assert concepts[0].dataset == DatasetTag.D1
        assert dropped == 2


class TestExtractionCoordinator:
    """Tests for ExtractionCoordinator."""

    @pytest.mark.asyncio
    async def test_one_batch_per_budget_window(self, fakes, graph):
        oracle = fakes.Extraction()
        coordinator = ExtractionCoordinator(oracle, graph, budget=80)

        outcome = await coordinator.extract_dataset(DatasetTag.D1, _elements(graph, DatasetTag.D1))

        assert outcome.batch_count == 2
        assert [[e.id for e in r.elements] for r in oracle.requests] == [["r1", "r2"], ["r3", "r4"]]
        assert len(outcome.concepts) == 4
        assert len(graph.arena.raw_concepts[DatasetTag.D1]) == 4

        premerge = [n for n in graph.arena.concept_nodes() if n.tag == ConceptTag.PREMERGE.value]
        assert len(premerge) == 4

    @pytest.mark.asyncio
    async def test_partial_failure_is_recorded(self, fakes, graph):
        def handler(request):
            if request.elements[0].id == "r3":
                return ExtractionResponse(success=False, error="model timeout")
            return ExtractionResponse(
                success=True,
                concepts=[ExtractedConceptPayload(label="Login", element_ids=[request.elements[0].id])],
            )

        batches = []
        coordinator = ExtractionCoordinator(fakes.Extraction(handler), graph, budget=80, on_batch=batches.append)
        outcome = await coordinator.extract_dataset(DatasetTag.D1, _elements(graph, DatasetTag.D1))

        assert len(outcome.concepts) == 1
        assert len(outcome.failures) == 1
        assert outcome.failures[0].batch_index == 1
        assert "model timeout" in str(outcome.failures[0])
        assert [b.ok for b in batches] == [True, False]

    @pytest.mark.asyncio
    async def test_every_batch_failing_raises(self, fakes, graph):
        def handler(request):
            raise OracleError("HTTP 500", status_code=500)

        coordinator = ExtractionCoordinator(fakes.Extraction(handler), graph, budget=80)

        with pytest.raises(DatasetExtractionError) as exc_info:
            await coordinator.extract_dataset(DatasetTag.D1, _elements(graph, DatasetTag.D1))

        assert len(exc_info.value.failures) == 2
        assert graph.arena.raw_concepts[DatasetTag.D1] == []

    @pytest.mark.asyncio
    async def test_unsuccessful_without_message(self, fakes, graph):
        coordinator = ExtractionCoordinator(
            fakes.Extraction(lambda request: ExtractionResponse(success=False)), graph, budget=1000
        )
        with pytest.raises(DatasetExtractionError, match="Unknown error"):
            await coordinator.extract_dataset(DatasetTag.D2, _elements(graph, DatasetTag.D2))

    @pytest.mark.asyncio
    async def test_empty_dataset(self, fakes, graph):
        oracle = fakes.Extraction()
        outcome = await ExtractionCoordinator(oracle, graph, budget=80).extract_dataset(DatasetTag.D1, [])

        assert outcome.batch_count == 0
        assert oracle.requests == []

    @pytest.mark.asyncio
    async def test_abort_discards_in_flight_batch(self, fakes, graph):
        oracle = fakes.Extraction()
        coordinator = ExtractionCoordinator(oracle, graph, budget=80, should_abort=lambda: len(oracle.requests) >= 1)

        with pytest.raises(PipelineAbort):
            await coordinator.extract_dataset(DatasetTag.D1, _elements(graph, DatasetTag.D1))

        assert len(oracle.requests) == 1
        assert graph.arena.raw_concepts[DatasetTag.D1] == []

    @pytest.mark.asyncio
    async def test_both_datasets_settle_independently(self, fakes, graph):
        def handler(request):
            if request.dataset_tag == DatasetTag.D2:
                return ExtractionResponse(success=False, error="bad corpus")
            return ExtractionResponse(
                success=True,
                concepts=[ExtractedConceptPayload(label=el.id, element_ids=[el.id]) for el in request.elements],
            )

        coordinator = ExtractionCoordinator(fakes.Extraction(handler), graph, budget=1000)
        outcomes = await coordinator.extract_both(
            _elements(graph, DatasetTag.D1), _elements(graph, DatasetTag.D2)
        )

        assert len(outcomes[DatasetTag.D1].concepts) == 4
        assert isinstance(outcomes[DatasetTag.D2], DatasetExtractionError)

    @pytest.mark.asyncio
    async def test_datasets_are_extracted_concurrently(self, graph):
        oracle = _RendezvousOracle()
        coordinator = ExtractionCoordinator(oracle, graph, budget=80)

        # D1's first batch waits for D2's first batch, so a sequential run never finishes
        outcomes = await asyncio.wait_for(
            coordinator.extract_both(_elements(graph, DatasetTag.D1), _elements(graph, DatasetTag.D2)),
            timeout=5,
        )

        assert oracle.calls[:2] == [DatasetTag.D1, DatasetTag.D2]
        assert len(outcomes[DatasetTag.D1].concepts) == 4
        assert len(outcomes[DatasetTag.D2].concepts) == 2


class _RendezvousOracle(ExtractionOracle):
    """Blocks the first D1 batch until a D2 batch has been requested."""

    def __init__(self):
        self.d2_started = asyncio.Event()
        self.calls: list[DatasetTag] = []

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.calls.append(request.dataset_tag)
        if request.dataset_tag == DatasetTag.D2:
            self.d2_started.set()
        elif not self.d2_started.is_set():
            await self.d2_started.wait()
        return ExtractionResponse(
            success=True,
            concepts=[ExtractedConceptPayload(label=el.id, element_ids=[el.id]) for el in request.elements],
        )
