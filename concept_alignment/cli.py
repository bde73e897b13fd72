"""Command-line interface for the Concept Alignment Pipeline."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from concept_alignment.config.settings import get_settings
from concept_alignment.logging_config import configure_logging
from concept_alignment.models import Element, PipelineInput, PipelineProgress, PipelineResult, RunStatus
from concept_alignment.oracles import create_oracles
from concept_alignment.pipeline.batcher import batch_by_char_budget, total_chars
from concept_alignment.pipeline.orchestrator import PipelineOrchestrator, generate_run_id
from concept_alignment.services.storage import RunStore

app = typer.Typer(
    name="concept-alignment",
    help="Concept Alignment Pipeline - reconcile a requirements corpus with an implementation corpus",
    add_completion=False,
)
console = Console()

_ELEMENTS_ADAPTER = TypeAdapter(list[Element])


def load_elements(path: Path) -> list[Element]:
    """Load elements from a JSON file holding a list, or an object with an ``elements`` list."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("elements", [])
    return _ELEMENTS_ADAPTER.validate_python(data)


@app.command()
def run(
    d1_path: Path = typer.Argument(
        ..., help="JSON file with the D1 (requirements) elements", exists=True, dir_okay=False, readable=True
    ),
    d2_path: Path = typer.Argument(
        ..., help="JSON file with the D2 (implementation) elements", exists=True, dir_okay=False, readable=True
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Directory for run results (default: configured runs_dir)"
    ),
    rounds: Optional[int] = typer.Option(None, "--rounds", "-r", min=1, help="Number of merge rounds"),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", min=1, help="Extraction batch budget in characters"),
    backend: Optional[str] = typer.Option(None, "--backend", help="Oracle backend: http or local"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Run the full alignment pipeline over two corpora."""
    settings = get_settings()
    if backend:
        if backend not in ("http", "local"):
            console.print(f"[red]Error:[/red] unknown backend '{backend}' (expected http or local)")
            sys.exit(2)
        settings = settings.model_copy(update={"oracle_backend": backend})

    configure_logging("DEBUG" if verbose else "WARNING")

    try:
        pipeline_input = PipelineInput(d1_elements=load_elements(d1_path), d2_elements=load_elements(d2_path))
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid element file:[/red] {e}")
        sys.exit(2)

    console.print(
        Panel.fit(
            "[bold blue]Concept Alignment Pipeline[/bold blue]\n"
            f"D1: {len(pipeline_input.d1_elements)} elements | D2: {len(pipeline_input.d2_elements)} elements",
            border_style="blue",
        )
    )

    store = RunStore(output or settings.runs_dir)
    run_id = generate_run_id()
    console.print(f"[dim]Run:[/dim] {run_id}")
    console.print(f"[dim]Output:[/dim] {store.get_run_dir(run_id)}\n")

    async def _execute() -> PipelineResult:
        oracles = create_oracles(settings)
        orchestrator = PipelineOrchestrator(
            oracles=oracles,
            settings=settings,
            sink=store,
            merge_rounds=rounds,
            batch_budget=budget,
        )
        orchestrator.add_listener(_make_progress_printer())
        await store.create_run(run_id, len(pipeline_input.d1_elements), len(pipeline_input.d2_elements))
        try:
            return await orchestrator.run(pipeline_input, run_id=run_id)
        finally:
            await oracles.aclose()

    try:
        result = asyncio.run(_execute())
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    _display_summary(result)

    if result.status != RunStatus.COMPLETED:
        sys.exit(1)


@app.command()
def batches(
    path: Path = typer.Argument(..., help="JSON file with elements", exists=True, dir_okay=False, readable=True),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", min=1, help="Batch budget in characters"),
) -> None:
    """Show how a corpus would be split into extraction batches."""
    budget = budget or get_settings().batch_char_budget
    elements = load_elements(path)
    split = batch_by_char_budget(elements, budget)

    table = Table(title=f"{len(elements)} elements, {total_chars(elements):,} chars, budget {budget:,}")
    table.add_column("Batch", justify="right")
    table.add_column("Elements", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("First / Last")

    for i, batch in enumerate(split, 1):
        table.add_row(str(i), str(len(batch)), f"{total_chars(batch):,}", f"{batch[0].id} / {batch[-1].id}")

    console.print(table)


@app.command()
def info() -> None:
    """Display configuration."""
    settings = get_settings()

    console.print(Panel.fit("[bold blue]Concept Alignment Pipeline[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Oracle backend", settings.oracle_backend)
    table.add_row("Oracle URL", settings.oracle_base_url)
    table.add_row("Batch budget", f"{settings.batch_char_budget:,} chars")
    table.add_row("Merge rounds", str(settings.merge_total_rounds))
    table.add_row("Default aligned polarity", str(settings.default_aligned_polarity))
    table.add_row("Runs dir", str(settings.runs_dir))

    console.print(table)


def _make_progress_printer():
    last_phase = {"value": None}

    def _print(progress: PipelineProgress) -> None:
        if progress.phase != last_phase["value"]:
            last_phase["value"] = progress.phase
            console.print(f"[yellow]{progress.percent:>3}%[/yellow] [bold]{progress.phase.value}[/bold] {progress.message}")

    return _print


def _display_summary(result: PipelineResult) -> None:
    colour = {"completed": "green", "aborted": "yellow"}.get(result.status.value, "red")
    console.print(f"\n[bold]Status:[/bold] [{colour}]{result.status.value}[/{colour}]")
    console.print("-" * 40)

    counters = result.counters
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Count", justify="right")

    table.add_row("Nodes / Edges", f"{len(result.nodes)} / {len(result.edges)}")
    table.add_row("Concepts extracted (D1 / D2)", f"{counters.d1_concept_count} / {counters.d2_concept_count}")
    table.add_row("Merges", str(len(result.merge_log)))
    table.add_row("Merged / Gaps / Orphans", f"{counters.merged_count} / {counters.gap_count} / {counters.orphan_count}")
    table.add_row("Tesseract cells", str(len(result.tesseract_cells)))
    table.add_row("Failed batches", str(counters.failed_batches))
    table.add_row("Scoring errors", str(counters.scoring_errors))
    console.print(table)

    if result.venn_result:
        summary = result.venn_result.summary
        console.print(
            f"\n[bold]Coverage[/bold] D1 {summary.total_d1_coverage:.1f}% | "
            f"D2 {summary.total_d2_coverage:.1f}% | score {summary.alignment_score:.1f}"
        )

    failed_steps = [s for s in result.steps if s.error_message]
    if failed_steps:
        console.print("\n[yellow]Step diagnostics:[/yellow]")
        for step in failed_steps:
            console.print(f"  [bold]{step.title}[/bold] ({step.status.value}): {step.error_message}")

    for error in result.errors:
        console.print(f"[red]{error.get('stage')}:[/red] {error.get('error')}")


if __name__ == "__main__":
    app()
