"""Pipeline orchestrator - drives one run through every phase.

Phases run in a fixed order:

    creating_nodes -> extracting_d1 || extracting_d2 -> merging_concepts
    -> building_graph -> building_tesseract -> generating_venn -> completed

Per-unit failures (one batch, one scored concept) are recorded on their step
and never stop the run. Phase-level failures move the run to ``error``; an
abort request moves it back to ``idle`` with status ``aborted``. Either way the
partial arena is returned as a ``PipelineResult`` and handed to the optional
result sink.
"""

import uuid
from datetime import datetime
from typing import Callable, Optional, Protocol

import structlog

from concept_alignment.config.settings import Settings, get_settings
from concept_alignment.models import (
    Concept,
    ConceptTag,
    DatasetTag,
    PipelineCounters,
    PipelineInput,
    PipelinePhase,
    PipelineProgress,
    PipelineResult,
    PipelineStep,
    RunStatus,
    StepStatus,
)
from concept_alignment.oracles.base import OracleSuite
from concept_alignment.pipeline.arena import PipelineArena
from concept_alignment.pipeline.batcher import batch_by_char_budget
from concept_alignment.pipeline.errors import (
    DatasetExtractionError,
    PipelineAbort,
    PipelineError,
    UnknownError,
)
from concept_alignment.pipeline.extraction import BatchOutcome, DatasetOutcome, ExtractionCoordinator
from concept_alignment.pipeline.graph_builder import GraphBuilder
from concept_alignment.pipeline.merge import MergeEngine, MergeRoundResult, build_unified_concepts
from concept_alignment.pipeline.scoring import TesseractBuilder, VennBuilder

logger = structlog.get_logger(__name__)

ProgressListener = Callable[[PipelineProgress], None]


class ResultSink(Protocol):
    """Receives the final snapshot of a run (on success, error or abort)."""

    async def save_results(self, run_id: str, result: PipelineResult) -> None:
        ...


STEP_DEFINITIONS: list[tuple[str, PipelinePhase, str]] = [
    ("nodes", PipelinePhase.CREATING_NODES, "Create element nodes"),
    ("d1", PipelinePhase.EXTRACTING_D1, "Extract D1 concepts"),
    ("d2", PipelinePhase.EXTRACTING_D2, "Extract D2 concepts"),
    ("merge", PipelinePhase.MERGING_CONCEPTS, "Merge concepts"),
    ("graph", PipelinePhase.BUILDING_GRAPH, "Build concept graph"),
    ("tesseract", PipelinePhase.BUILDING_TESSERACT, "Score concepts"),
    ("venn", PipelinePhase.GENERATING_VENN, "Generate Venn partition"),
]

_DATASET_STEP = {DatasetTag.D1: "d1", DatasetTag.D2: "d2"}


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return str(uuid.uuid4())[:12]


class PipelineOrchestrator:
    """Runs the alignment pipeline over two corpora.

    One orchestrator owns one arena and runs at most one pipeline at a time.
    Progress is published to listeners after every phase transition and every
    unit of work; listeners are observers and may call ``abort()``.
    """

    def __init__(
        self,
        oracles: OracleSuite,
        settings: Optional[Settings] = None,
        sink: Optional[ResultSink] = None,
        merge_rounds: Optional[int] = None,
        batch_budget: Optional[int] = None,
    ):
        self.oracles = oracles
        self.settings = settings or get_settings()
        self.sink = sink
        self.merge_rounds = merge_rounds or self.settings.merge_total_rounds
        self.batch_budget = batch_budget or self.settings.batch_char_budget

        self.arena = PipelineArena()
        self.graph = GraphBuilder(self.arena, self.settings.element_description_limit)
        self._listeners: list[ProgressListener] = []
        self._running = False
        self._abort_requested = False
        self.last_result: Optional[PipelineResult] = None
        self._reset(None)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def add_listener(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a progress listener. Returns a callable that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def abort(self) -> None:
        """Request cooperative cancellation of the current run."""
        if not self._running:
            return
        self._abort_requested = True
        logger.info("pipeline_abort_requested", run_id=self.run_id)

    async def run(self, pipeline_input: PipelineInput, run_id: Optional[str] = None) -> PipelineResult:
        """Run every phase and return the result snapshot.

        Never raises for pipeline failures: the returned result carries the
        status, the partial arena and the recorded errors.

        Raises:
            RuntimeError: If this orchestrator is already running.
        """
        if self._running:
            raise RuntimeError("Pipeline is already running")

        self._reset(run_id or generate_run_id())
        self._running = True
        logger.info(
            "pipeline_start",
            run_id=self.run_id,
            d1_elements=len(pipeline_input.d1_elements),
            d2_elements=len(pipeline_input.d2_elements),
            merge_rounds=self.merge_rounds,
            batch_budget=self.batch_budget,
        )

        try:
            try:
                await self._run_phases(pipeline_input)
                status = RunStatus.COMPLETED
                self._publish(PipelinePhase.COMPLETED, "Pipeline complete", 100)

            except PipelineAbort as e:
                status = RunStatus.ABORTED
                self._fail_running_steps(str(e))
                self._publish(PipelinePhase.IDLE, "Aborted")
                logger.warning("pipeline_aborted", run_id=self.run_id, phase=self.progress.phase.value)

            except PipelineError as e:
                status = RunStatus.ERROR
                self._record_error(e.stage, e)
                self._fail_running_steps(str(e))
                self._publish(PipelinePhase.ERROR, str(e))
                logger.error("pipeline_failed", run_id=self.run_id, stage=e.stage, error=str(e))

            except Exception as e:
                wrapped = UnknownError(f"{type(e).__name__}: {e}")
                status = RunStatus.ERROR
                self._record_error(wrapped.stage, e)
                self._fail_running_steps(str(wrapped))
                self._publish(PipelinePhase.ERROR, str(wrapped))
                logger.exception("pipeline_unexpected_error", run_id=self.run_id, error=str(e))

            self.processing_end = datetime.now()
            result = self.snapshot(status)
            await self._persist(result)

        finally:
            self._running = False
            self._abort_requested = False

        logger.info(
            "pipeline_complete",
            run_id=self.run_id,
            status=result.status.value,
            duration_seconds=round((self.processing_end - self.processing_start).total_seconds(), 2),
            nodes=len(result.nodes),
            edges=len(result.edges),
            cells=len(result.tesseract_cells),
            errors=len(result.errors),
        )
        self.last_result = result
        return result

    def snapshot(self, status: RunStatus = RunStatus.RUNNING) -> PipelineResult:
        """Copy the current arena and diagnostics into a result."""
        return PipelineResult(
            status=status,
            phase=self.progress.phase,
            nodes=list(self.arena.nodes.values()),
            edges=list(self.arena.edges.values()),
            tesseract_cells=list(self.arena.tesseract_cells),
            venn_result=self.arena.venn_result,
            concepts=list(self.arena.concepts),
            merge_log=list(self.arena.merge_log),
            steps=[step.model_copy(deep=True) for step in self.steps.values()],
            counters=self.counters.model_copy(),
            processing_start=self.processing_start,
            processing_end=self.processing_end,
            stage_durations=dict(self.stage_durations),
            errors=list(self.errors),
            warnings=list(self.warnings),
        )

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _run_phases(self, pipeline_input: PipelineInput) -> None:
        self._run_create_nodes(pipeline_input)
        self._check_abort()

        await self._run_extraction(pipeline_input)
        self._check_abort()

        await self._run_merge()
        self._check_abort()

        final_concepts = self._run_graph_rebuild()
        self._check_abort()

        await self._run_tesseract(final_concepts)
        self._check_abort()

        await self._run_venn(final_concepts)

    def _run_create_nodes(self, pipeline_input: PipelineInput) -> None:
        stage_start = datetime.now()
        self._start_step("nodes", "Creating element nodes...")
        self._publish(PipelinePhase.CREATING_NODES, "Creating element nodes...", 5)

        d1_count = self.graph.create_element_nodes(DatasetTag.D1, pipeline_input.d1_elements)
        d2_count = self.graph.create_element_nodes(DatasetTag.D2, pipeline_input.d2_elements)

        self._finish_step("nodes", f"Created {d1_count + d2_count} element nodes ({d1_count} D1, {d2_count} D2)")
        self.stage_durations["create_nodes"] = (datetime.now() - stage_start).total_seconds()
        logger.info("stage_create_nodes_complete", d1_nodes=d1_count, d2_nodes=d2_count)

    async def _run_extraction(self, pipeline_input: PipelineInput) -> None:
        stage_start = datetime.now()
        total_batches = len(batch_by_char_budget(pipeline_input.d1_elements, self.batch_budget)) + len(
            batch_by_char_budget(pipeline_input.d2_elements, self.batch_budget)
        )
        finished = 0

        def on_batch(outcome: BatchOutcome) -> None:
            nonlocal finished
            finished += 1
            step_id = _DATASET_STEP[outcome.dataset]
            label = f"Batch {outcome.index + 1}/{outcome.total} ({outcome.element_count} elements)"
            if outcome.ok:
                detail = f"{label}: {len(outcome.concepts)} concepts"
            else:
                detail = f"{label}: failed ({outcome.error.reason})"
                self.counters.failed_batches += 1
            self._update_step(
                step_id,
                message=detail,
                progress=int((outcome.index + 1) / outcome.total * 100),
                detail=detail,
            )
            if outcome.dataset == DatasetTag.D1:
                phase = PipelinePhase.EXTRACTING_D1
            else:
                phase = PipelinePhase.EXTRACTING_D2
            percent = 15 + int(20 * finished / max(total_batches, 1))
            self._publish(phase, f"{outcome.dataset.value.upper()} {detail}", percent)

        self._start_step("d1", "Extracting concepts...")
        self._start_step("d2", "Extracting concepts...")
        self._publish(PipelinePhase.EXTRACTING_D1, "Extracting concepts from both datasets...", 15)

        coordinator = ExtractionCoordinator(
            oracle=self.oracles.extraction,
            graph=self.graph,
            budget=self.batch_budget,
            should_abort=self._should_abort,
            on_batch=on_batch,
        )
        outcomes = await coordinator.extract_both(pipeline_input.d1_elements, pipeline_input.d2_elements)

        if any(isinstance(o, PipelineAbort) for o in outcomes.values()):
            raise PipelineAbort()

        for dataset, outcome in outcomes.items():
            step_id = _DATASET_STEP[dataset]
            if isinstance(outcome, DatasetOutcome):
                message = f"Extracted {len(outcome.concepts)} concepts from {outcome.batch_count} batch(es)"
                error_message = None
                if outcome.failures:
                    error_message = f"{len(outcome.failures)} batch(es) failed:\n" + "\n".join(
                        str(f) for f in outcome.failures
                    )
                    self.warnings.append({"stage": f"extraction_{dataset.value}", "error": error_message})
                self._finish_step(step_id, message, error_message=error_message)
            elif isinstance(outcome, DatasetExtractionError):
                self._record_error(f"extraction_{dataset.value}", outcome)
                self._fail_step(step_id, str(outcome))
                logger.error("stage_extraction_dataset_failed", dataset=dataset.value, error=str(outcome))
            else:
                self._record_error(f"extraction_{dataset.value}", outcome)
                self._fail_step(step_id, f"{type(outcome).__name__}: {outcome}")
                logger.error(
                    "stage_extraction_dataset_crashed",
                    dataset=dataset.value,
                    error=str(outcome),
                    type=type(outcome).__name__,
                )

        self.counters.d1_concept_count = len(self.arena.raw_concepts[DatasetTag.D1])
        self.counters.d2_concept_count = len(self.arena.raw_concepts[DatasetTag.D2])
        self.stage_durations["extraction"] = (datetime.now() - stage_start).total_seconds()
        logger.info(
            "stage_extraction_complete",
            d1_concepts=self.counters.d1_concept_count,
            d2_concepts=self.counters.d2_concept_count,
            failed_batches=self.counters.failed_batches,
        )

    async def _run_merge(self) -> None:
        stage_start = datetime.now()
        raw = self.arena.all_raw_concepts
        self._start_step("merge", f"Merging {len(raw)} concepts...")
        self._publish(PipelinePhase.MERGING_CONCEPTS, f"Merging {len(raw)} concepts...", 35)

        concepts, next_id = build_unified_concepts(raw, self.arena.next_concept_id)
        self.arena.concepts = concepts
        self.arena.next_concept_id = next_id

        def on_progress(message: str) -> None:
            self._update_step("merge", message=message)

        def on_round(result: MergeRoundResult) -> None:
            r = result.round_number
            if result.skipped:
                self._update_step("merge", detail=f"Round {r}: skipped ({result.input_active} active concept(s))")
            else:
                self.counters.merge_rounds_applied += 1
                for entry in result.entries:
                    self._update_step(
                        "merge",
                        detail=f"Round {r}: {' + '.join(entry.from_labels)} -> {entry.to_label}",
                    )
                for rejected in result.rejected:
                    self._update_step("merge", detail=f"Round {r}: rejected {rejected}")
            message = f"Round {r}/{self.merge_rounds}: {result.input_active} -> {result.output_active} concepts"
            self._update_step("merge", message=message, progress=int(r / self.merge_rounds * 100))
            self._publish(PipelinePhase.MERGING_CONCEPTS, message, 35 + int(15 * r / self.merge_rounds))

        engine = MergeEngine(self.oracles.merge, self.settings)
        self.arena.next_concept_id = await engine.run(
            self.arena.concepts,
            self.arena.next_concept_id,
            self.arena.merge_log,
            total_rounds=self.merge_rounds,
            should_abort=self._should_abort,
            on_round=on_round,
            on_progress=on_progress,
        )

        active = len(self.arena.active_concepts)
        self._finish_step("merge", f"{active} concepts after {len(self.arena.merge_log)} merge(s)")
        self.stage_durations["merge"] = (datetime.now() - stage_start).total_seconds()
        logger.info("stage_merge_complete", active=active, merges=len(self.arena.merge_log))

    def _run_graph_rebuild(self) -> list[Concept]:
        stage_start = datetime.now()
        self._start_step("graph", "Rebuilding concept nodes...")
        self._publish(PipelinePhase.BUILDING_GRAPH, "Building concept graph...", 50)

        rebuild = self.graph.rebuild(self.arena.active_concepts, self.arena.all_raw_concepts)

        self.counters.merged_count = rebuild.count(ConceptTag.MERGED)
        self.counters.gap_count = rebuild.count(ConceptTag.GAP)
        self.counters.orphan_count = rebuild.count(ConceptTag.ORPHAN)

        message = (
            f"{self.counters.merged_count} merged, {self.counters.gap_count} gaps, "
            f"{self.counters.orphan_count} orphans"
        )
        self._update_step(
            "graph",
            detail=f"Removed {rebuild.nodes_removed} premerge nodes and {rebuild.edges_removed} edges",
        )
        if rebuild.used_fallback:
            self._update_step("graph", detail="No concepts survived merging; raw concepts passed through")
            self.warnings.append({"stage": "graph", "error": "Merge produced no concepts; used raw concepts"})
        self._finish_step("graph", message)
        self.stage_durations["graph"] = (datetime.now() - stage_start).total_seconds()

        return [concept for concept, _ in rebuild.concept_nodes]

    async def _run_tesseract(self, concepts: list[Concept]) -> None:
        stage_start = datetime.now()
        self._start_step("tesseract", f"Scoring {len(concepts)} concepts...")
        self._publish(PipelinePhase.BUILDING_TESSERACT, f"Scoring {len(concepts)} concepts...", 65)

        def on_concept(index, total, concept, cell, error) -> None:
            if cell is not None:
                detail = f"{concept.label}: polarity {cell.polarity:+.2f}"
            else:
                detail = f"{concept.label}: failed ({error})"
                self.counters.scoring_errors += 1
            message = f"Scored {index + 1}/{total}: {concept.label}"
            self._update_step("tesseract", message=message, progress=int((index + 1) / total * 100), detail=detail)
            self._publish(PipelinePhase.BUILDING_TESSERACT, message, 65 + int(20 * (index + 1) / total))

        builder = TesseractBuilder(self.oracles.scoring, self.arena.elements)
        outcome = await builder.build(
            concepts,
            self.arena.tesseract_cells,
            should_abort=self._should_abort,
            on_concept=on_concept,
        )

        message = f"{len(outcome.cells)} cells from {len(concepts)} concepts"
        if outcome.errors:
            error_message = f"{len(outcome.errors)} concept(s) failed to score:\n" + "\n".join(
                str(e) for e in outcome.errors
            )
            self.warnings.append({"stage": "tesseract", "error": error_message})
            if not outcome.cells:
                self._fail_step("tesseract", error_message)
            else:
                self._finish_step("tesseract", message, error_message=error_message)
        else:
            self._finish_step("tesseract", message)

        self.stage_durations["tesseract"] = (datetime.now() - stage_start).total_seconds()
        logger.info("stage_tesseract_complete", cells=len(outcome.cells), errors=len(outcome.errors))

    async def _run_venn(self, concepts: list[Concept]) -> None:
        stage_start = datetime.now()
        self._start_step("venn", "Partitioning concepts...")
        self._publish(PipelinePhase.GENERATING_VENN, "Generating Venn partition...", 85)

        builder = VennBuilder(self.oracles.venn, self.settings.default_aligned_polarity)
        cells = self.arena.tesseract_cells
        self.arena.venn_result = builder.partition(concepts, cells)

        def on_progress(message: str) -> None:
            self._update_step("venn", message=message)

        payload = await builder.fetch_oracle_payload(concepts, cells, on_progress)
        self._check_abort()
        if payload is not None:
            before = len(self.arena.venn_result.unique_to_d2)
            self.arena.venn_result = builder.partition(concepts, cells, extra_d2=payload.unique_to_d2)
            added = len(self.arena.venn_result.unique_to_d2) - before
            self._update_step("venn", detail=f"Venn oracle added {added} D2-only item(s)")

        summary = self.arena.venn_result.summary
        self._finish_step(
            "venn",
            f"{summary.aligned} aligned, {summary.gaps} gaps, {summary.orphans} orphans "
            f"(score {summary.alignment_score:.1f})",
        )
        self.stage_durations["venn"] = (datetime.now() - stage_start).total_seconds()
        logger.info(
            "stage_venn_complete",
            aligned=summary.aligned,
            gaps=summary.gaps,
            orphans=summary.orphans,
            alignment_score=summary.alignment_score,
        )

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    def _reset(self, run_id: Optional[str]) -> None:
        self.run_id = run_id
        self.arena.reset()
        self.progress = PipelineProgress()
        self.steps: dict[str, PipelineStep] = {
            step_id: PipelineStep(id=step_id, phase=phase, title=title)
            for step_id, phase, title in STEP_DEFINITIONS
        }
        self.counters = PipelineCounters()
        self.errors: list[dict] = []
        self.warnings: list[dict] = []
        self.stage_durations: dict[str, float] = {}
        self.processing_start = datetime.now()
        self.processing_end: Optional[datetime] = None
        self._abort_requested = False

    def _should_abort(self) -> bool:
        return self._abort_requested

    def _check_abort(self) -> None:
        if self._abort_requested:
            raise PipelineAbort()

    def _publish(
        self,
        phase: Optional[PipelinePhase] = None,
        message: Optional[str] = None,
        percent: Optional[int] = None,
    ) -> None:
        if phase is not None:
            self.progress.phase = phase
        if message is not None:
            self.progress.message = message
        if percent is not None:
            self.progress.percent = max(0, min(100, percent))
        self.progress.counts = self.arena.counts()

        snapshot = self.progress.model_copy(deep=True)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("progress_listener_failed", error=str(e), type=type(e).__name__)

    def _start_step(self, step_id: str, message: str) -> None:
        step = self.steps[step_id]
        step.status = StepStatus.RUNNING
        step.message = message
        step.started_at = datetime.now()

    def _update_step(
        self,
        step_id: str,
        message: Optional[str] = None,
        progress: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        step = self.steps[step_id]
        if message is not None:
            step.message = message
        if progress is not None:
            step.progress = max(0, min(100, progress))
        if detail is not None:
            step.details.append(detail)

    def _finish_step(self, step_id: str, message: str, error_message: Optional[str] = None) -> None:
        step = self.steps[step_id]
        step.status = StepStatus.COMPLETED
        step.message = message
        step.progress = 100
        step.completed_at = datetime.now()
        step.error_message = error_message

    def _fail_step(self, step_id: str, error_message: str) -> None:
        step = self.steps[step_id]
        step.status = StepStatus.ERROR
        step.message = "Failed"
        step.completed_at = datetime.now()
        step.error_message = error_message

    def _fail_running_steps(self, error_message: str) -> None:
        for step_id, step in self.steps.items():
            if step.status == StepStatus.RUNNING:
                self._fail_step(step_id, error_message)

    def _record_error(self, stage: str, error: BaseException) -> None:
        self.errors.append({"stage": stage, "error": str(error), "type": type(error).__name__})

    async def _persist(self, result: PipelineResult) -> None:
        if self.sink is None or self.run_id is None:
            return
        try:
            await self.sink.save_results(self.run_id, result)
        except Exception as e:
            logger.error("results_persist_failed", run_id=self.run_id, error=str(e))
            result.errors.append({"stage": "persistence", "error": str(e), "type": type(e).__name__})
