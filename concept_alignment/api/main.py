"""
FastAPI application for the Concept Alignment Pipeline.

Endpoints:
- Start a pipeline run over two corpora
- Poll run progress and per-phase steps
- Abort a running pipeline
- Retrieve the (possibly partial) results of a finished run

No database - results are stored as JSON on disk, one directory per run.
"""

# Load .env BEFORE any application imports that read os.environ
from dotenv import load_dotenv
load_dotenv()

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from concept_alignment.api.routes import runs
from concept_alignment.config.settings import get_settings
from concept_alignment.logging_config import configure_logging
from concept_alignment.services.pipeline_runner import PipelineRunner
from concept_alignment.services.storage import RunStore


def create_app(runner: Optional[PipelineRunner] = None) -> FastAPI:
    """Build the API app. Tests pass their own runner (with fake oracles)."""
    settings = get_settings()
    configure_logging(settings.log_level)

    if runner is None:
        runner = PipelineRunner(settings, RunStore(settings.runs_dir))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Ensure the runs directory exists on startup."""
        runner.store.runs_dir.mkdir(parents=True, exist_ok=True)
        yield

    app = FastAPI(
        title="Concept Alignment API",
        description="Reconcile a requirements corpus with an implementation corpus",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(runs.router, prefix="/api", tags=["Runs"])

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": "1.0.0"}

    return app


app = create_app()


# =============================================================================
# Run with: python -m concept_alignment.api.main
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8100))
    uvicorn.run(
        "concept_alignment.api.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
