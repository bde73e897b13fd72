"""
Storage Service for Run Data

Persists pipeline results as JSON files on disk - no database required.

Layout:
- Each run gets its own directory under {runs_dir}/{run_id}/
- One file per arena collection (nodes, edges, cells, venn, concepts, merge log)
- metadata.json carries status, phase, counters, steps and errors
"""

import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import aiofiles
import structlog

from concept_alignment.models import PipelineResult, RunStatus

logger = structlog.get_logger(__name__)

METADATA_FILE = "metadata.json"

RESULT_FILES = {
    "nodes": "nodes.json",
    "edges": "edges.json",
    "tesseract_cells": "tesseract_cells.json",
    "venn_result": "venn_result.json",
    "concepts": "concepts.json",
    "merge_log": "merge_log.json",
}


class RunStore:
    """File-backed store for run metadata and results."""

    def __init__(self, runs_dir: Path | str):
        self.runs_dir = Path(runs_dir)

    def get_run_dir(self, run_id: str) -> Path:
        return self.runs_dir / run_id

    def get_run_file(self, run_id: str, filename: str) -> Path:
        return self.get_run_dir(run_id) / filename

    # =========================================================================
    # File Operations
    # =========================================================================

    async def save_run_file(self, run_id: str, filename: str, data: Any) -> None:
        """Save data to a file in the run directory."""
        run_dir = self.get_run_dir(run_id)
        run_dir.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(run_dir / filename, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, default=str))

    async def load_run_file(self, run_id: str, filename: str) -> Optional[Any]:
        """Load data from a file in the run directory."""
        file_path = self.get_run_file(run_id, filename)
        if not file_path.exists():
            return None

        async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
            content = await f.read()
        return json.loads(content)

    # =========================================================================
    # Run Operations
    # =========================================================================

    async def create_run(self, run_id: str, d1_count: int, d2_count: int) -> dict:
        """Create the run directory and its initial metadata."""
        metadata = {
            "run_id": run_id,
            "status": RunStatus.RUNNING.value,
            "phase": "idle",
            "started_at": datetime.utcnow().isoformat(),
            "completed_at": None,
            "d1_elements": d1_count,
            "d2_elements": d2_count,
            "counters": {},
            "steps": [],
            "errors": [],
            "warnings": [],
        }
        await self.save_run_file(run_id, METADATA_FILE, metadata)
        return metadata

    async def get_run_metadata(self, run_id: str) -> Optional[dict]:
        return await self.load_run_file(run_id, METADATA_FILE)

    async def update_run_status(self, run_id: str, status: str, error_message: Optional[str] = None) -> None:
        """Update the status of a run."""
        metadata = await self.get_run_metadata(run_id)
        if metadata is None:
            return
        metadata["status"] = status
        if status != RunStatus.RUNNING.value:
            metadata["completed_at"] = datetime.utcnow().isoformat()
        if error_message:
            metadata.setdefault("errors", []).append({"stage": "runner", "error": error_message})
        await self.save_run_file(run_id, METADATA_FILE, metadata)

    async def save_results(self, run_id: str, result: PipelineResult) -> None:
        """Write every arena collection plus metadata for a finished run."""
        data = result.model_dump(mode="json")
        for key, filename in RESULT_FILES.items():
            await self.save_run_file(run_id, filename, data[key])

        metadata = await self.get_run_metadata(run_id) or {"run_id": run_id}
        metadata.update(
            {
                "status": data["status"],
                "phase": data["phase"],
                "completed_at": data["processing_end"],
                "counters": data["counters"],
                "steps": data["steps"],
                "stage_durations": data["stage_durations"],
                "errors": data["errors"],
                "warnings": data["warnings"],
                "counts": {
                    "nodes": len(result.nodes),
                    "edges": len(result.edges),
                    "tesseract_cells": len(result.tesseract_cells),
                    "concepts": len(result.concepts),
                },
            }
        )
        await self.save_run_file(run_id, METADATA_FILE, metadata)
        logger.info("run_results_saved", run_id=run_id, status=data["status"])

    async def load_results(self, run_id: str) -> Optional[dict]:
        """Load the persisted collections of a run, or None if it has none yet."""
        if not self.get_run_file(run_id, RESULT_FILES["nodes"]).exists():
            return None
        results = {}
        for key, filename in RESULT_FILES.items():
            results[key] = await self.load_run_file(run_id, filename)
        return results

    async def list_runs(self) -> list[dict]:
        """List all runs with their metadata."""
        runs = []
        if not self.runs_dir.exists():
            return runs

        for run_dir in sorted(self.runs_dir.iterdir(), reverse=True):
            if not run_dir.is_dir():
                continue
            metadata = await self.load_run_file(run_dir.name, METADATA_FILE)
            if metadata:
                runs.append(metadata)
        return runs

    async def run_exists(self, run_id: str) -> bool:
        return self.get_run_dir(run_id).exists()

    async def delete_run(self, run_id: str) -> bool:
        """Delete a run and all its files."""
        run_dir = self.get_run_dir(run_id)
        if run_dir.exists():
            shutil.rmtree(run_dir)
            return True
        return False
