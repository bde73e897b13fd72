"""
Run Routes

Start pipeline runs, poll their progress, abort them and fetch their results.
"""

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from concept_alignment.api.schemas import (
    AbortResponse,
    RunResultsResponse,
    RunStatusResponse,
    StartRunRequest,
    StartRunResponse,
)
from concept_alignment.models import PipelineInput, PipelinePhase, PipelineProgress, PipelineStep
from concept_alignment.services.pipeline_runner import PipelineRunner

router = APIRouter()


def get_runner(request: Request) -> PipelineRunner:
    return request.app.state.runner


@router.post("/runs", response_model=StartRunResponse)
async def start_run(
    body: StartRunRequest,
    background_tasks: BackgroundTasks,
    runner: PipelineRunner = Depends(get_runner),
) -> StartRunResponse:
    """
    Start a pipeline run.

    The run executes in the background. Use the returned run_id
    to poll progress and retrieve results.
    """
    pipeline_input = PipelineInput(d1_elements=body.d1_elements, d2_elements=body.d2_elements)
    run_id = await runner.start(
        pipeline_input,
        merge_rounds=body.merge_rounds,
        batch_budget=body.batch_char_budget,
    )

    background_tasks.add_task(runner.execute, run_id, pipeline_input)

    return StartRunResponse(run_id=run_id, status="queued", started_at=datetime.utcnow())


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str, runner: PipelineRunner = Depends(get_runner)) -> RunStatusResponse:
    """Live progress and steps of a run."""
    orchestrator = runner.get(run_id)
    if orchestrator is not None:
        if orchestrator.is_running:
            status = "running"
        elif orchestrator.last_result is not None:
            status = orchestrator.last_result.status.value
        else:
            status = "queued"
        return RunStatusResponse(
            run_id=run_id,
            status=status,
            progress=orchestrator.progress,
            steps=list(orchestrator.steps.values()),
            counters=orchestrator.counters,
            errors=list(orchestrator.errors),
        )

    # Not in memory (e.g. server restarted) - fall back to persisted metadata
    metadata = await runner.store.get_run_metadata(run_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    return RunStatusResponse(
        run_id=run_id,
        status=metadata.get("status", "unknown"),
        progress=PipelineProgress(phase=PipelinePhase(metadata.get("phase", "idle"))),
        steps=[PipelineStep.model_validate(s) for s in metadata.get("steps", [])],
        counters=metadata.get("counters") or None,
        errors=metadata.get("errors", []),
    )


@router.post("/runs/{run_id}/abort", response_model=AbortResponse)
async def abort_run(run_id: str, runner: PipelineRunner = Depends(get_runner)) -> AbortResponse:
    """Request cooperative cancellation of a running pipeline."""
    if runner.get(run_id) is None and not await runner.store.run_exists(run_id):
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    if runner.abort(run_id):
        return AbortResponse(run_id=run_id, aborted=True, message="Abort requested")
    return AbortResponse(run_id=run_id, aborted=False, message="Run is not running")


@router.get("/runs/{run_id}/results", response_model=RunResultsResponse)
async def get_run_results(run_id: str, runner: PipelineRunner = Depends(get_runner)) -> RunResultsResponse:
    """Final (or partial, after error/abort) collections of a run."""
    orchestrator = runner.get(run_id)
    if orchestrator is not None and orchestrator.is_running:
        raise HTTPException(status_code=409, detail=f"Run still in progress: {run_id}")

    results = await runner.get_results(run_id)
    if results is None:
        raise HTTPException(status_code=404, detail=f"No results for run: {run_id}")

    if orchestrator is not None and orchestrator.last_result is not None:
        status = orchestrator.last_result.status.value
    else:
        metadata = await runner.store.get_run_metadata(run_id) or {}
        status = metadata.get("status", "unknown")

    return RunResultsResponse(run_id=run_id, status=status, results=results)
