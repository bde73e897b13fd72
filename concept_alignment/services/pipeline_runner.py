"""
Pipeline Runner Service

Bridges the pipeline orchestrator with the web API.

- Each run gets its own orchestrator and its own oracle suite
- Runs execute as background tasks; progress is read from the live orchestrator
- Results are persisted through the run store when a run ends (success, error or abort)
- Only the most recent finished runs stay in memory; older ones are read back from disk
"""

from collections import deque
from typing import Callable, Optional

import structlog

from concept_alignment.config.settings import Settings
from concept_alignment.models import PipelineInput, PipelineResult, RunStatus
from concept_alignment.oracles import OracleSuite, create_oracles
from concept_alignment.pipeline.orchestrator import PipelineOrchestrator, generate_run_id
from concept_alignment.services.storage import RunStore

logger = structlog.get_logger(__name__)

OracleFactory = Callable[[Settings], OracleSuite]


class PipelineRunner:
    """Registry of pipeline runs started through the API."""

    def __init__(
        self,
        settings: Settings,
        store: RunStore,
        oracle_factory: OracleFactory = create_oracles,
    ):
        self.settings = settings
        self.store = store
        self.oracle_factory = oracle_factory
        self._runs: dict[str, PipelineOrchestrator] = {}
        self._finished: deque[str] = deque()

    async def start(
        self,
        pipeline_input: PipelineInput,
        merge_rounds: Optional[int] = None,
        batch_budget: Optional[int] = None,
    ) -> str:
        """Register a new run and return its id. Call ``execute`` to run it."""
        run_id = generate_run_id()
        self._runs[run_id] = PipelineOrchestrator(
            oracles=self.oracle_factory(self.settings),
            settings=self.settings,
            sink=self.store,
            merge_rounds=merge_rounds,
            batch_budget=batch_budget,
        )
        await self.store.create_run(run_id, len(pipeline_input.d1_elements), len(pipeline_input.d2_elements))
        logger.info("run_registered", run_id=run_id)
        return run_id

    async def execute(self, run_id: str, pipeline_input: PipelineInput) -> Optional[PipelineResult]:
        """Run a registered pipeline to the end. Intended as a background task."""
        orchestrator = self._runs.get(run_id)
        if orchestrator is None:
            logger.error("run_not_registered", run_id=run_id)
            return None

        try:
            return await orchestrator.run(pipeline_input, run_id=run_id)
        except Exception as e:
            logger.exception("run_crashed", run_id=run_id, error=str(e))
            await self.store.update_run_status(run_id, RunStatus.ERROR.value, f"{type(e).__name__}: {e}")
            return None
        finally:
            await orchestrator.oracles.aclose()
            self._retire(run_id)

    def _retire(self, run_id: str) -> None:
        self._finished.append(run_id)
        while len(self._finished) > self.settings.retained_runs:
            evicted = self._finished.popleft()
            self._runs.pop(evicted, None)
            logger.debug("run_evicted_from_memory", run_id=evicted)

    def get(self, run_id: str) -> Optional[PipelineOrchestrator]:
        return self._runs.get(run_id)

    def abort(self, run_id: str) -> bool:
        """Request abort of a running pipeline. Returns False if it is not running."""
        orchestrator = self._runs.get(run_id)
        if orchestrator is None or not orchestrator.is_running:
            return False
        orchestrator.abort()
        return True

    async def get_results(self, run_id: str) -> Optional[dict]:
        """Final collections of a run, from memory if available, else from disk."""
        orchestrator = self._runs.get(run_id)
        if orchestrator is not None and orchestrator.last_result is not None:
            return orchestrator.last_result.model_dump(mode="json")
        return await self.store.load_results(run_id)
