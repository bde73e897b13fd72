"""Local oracles backed by LangChain + Ollama.

The chains are synchronous, so every call runs in the default executor to keep
the event loop free. The local venn oracle is deterministic and needs no LLM.
"""

import asyncio
from typing import AsyncIterator, Optional, Sequence

import structlog
from pydantic import ValidationError

from concept_alignment.config.settings import Settings
from concept_alignment.llm.chains import (
    run_alignment_scoring_chain,
    run_concept_extraction_chain,
    run_concept_merge_chain,
)
from concept_alignment.models import (
    DatasetTag,
    Element,
    ErrorEvent,
    ExtractedConceptPayload,
    ExtractionRequest,
    ExtractionResponse,
    MergeRequest,
    ProgressEvent,
    ResultEvent,
    ScoredCell,
    ScoringElement,
    ScoringRequest,
    ScoringResponse,
    StreamEvent,
    VennConceptRef,
    VennRequest,
)
from concept_alignment.oracles.base import (
    ExtractionOracle,
    MergeOracle,
    OracleSuite,
    ScoringOracle,
    VennOracle,
)

logger = structlog.get_logger(__name__)

_DATASET_LABELS = {
    DatasetTag.D1: "D1 (requirements)",
    DatasetTag.D2: "D2 (implementation)",
}


def format_elements(elements: Sequence[Element | ScoringElement], content_limit: int) -> str:
    """Render elements as prompt text, one block per element."""
    blocks = []
    for element in elements:
        content = element.content[:content_limit] if element.content else "(empty)"
        blocks.append(f"### {element.label or element.id}\nID: {element.id}\n{content}")
    return "\n\n---\n\n".join(blocks)


async def _run_chain(func, **kwargs) -> dict:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(**kwargs))


class LocalExtractionOracle(ExtractionOracle):
    def __init__(self, content_limit: int = 2000):
        self.content_limit = content_limit

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        try:
            raw = await _run_chain(
                run_concept_extraction_chain,
                dataset_label=_DATASET_LABELS[request.dataset_tag],
                elements_text=format_elements(request.elements, self.content_limit),
                element_count=len(request.elements),
            )
        except Exception as e:
            logger.error("local_extraction_failed", dataset=request.dataset_tag.value, error=str(e))
            return ExtractionResponse(success=False, error=f"{type(e).__name__}: {e}")

        concepts = []
        for item in raw.get("concepts", []) or []:
            try:
                concepts.append(ExtractedConceptPayload.model_validate(item))
            except ValidationError as e:
                logger.warning("local_extraction_item_skipped", error=str(e))
        return ExtractionResponse(success=True, concepts=concepts)


class LocalMergeOracle(MergeOracle):
    def __init__(self, settings: Settings):
        self.settings = settings

    async def propose_merges(self, request: MergeRequest) -> AsyncIterator[StreamEvent]:
        policy = self.settings.round_policy(request.round)
        yield ProgressEvent(
            message=f"Round {request.round}/{request.total_rounds}: {policy.label} over {len(request.concepts)} concepts",
        )

        concepts_text = "\n\n".join(
            f"[{c.id}] {c.label}\n{c.description or '(no description)'}" for c in request.concepts
        )
        try:
            raw = await _run_chain(
                run_concept_merge_chain,
                concepts_text=concepts_text,
                concept_count=len(request.concepts),
                round_number=request.round,
                total_rounds=request.total_rounds,
                round_label=policy.label,
                criteria=request.criteria or policy.criteria,
                target_count=request.target_count,
            )
        except Exception as e:
            yield ErrorEvent(message=f"{type(e).__name__}: {e}")
            return

        yield ResultEvent(data={"merges": raw.get("merges", []) or []})


class LocalScoringOracle(ScoringOracle):
    def __init__(self, content_limit: int = 2000):
        self.content_limit = content_limit

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        concept = request.concept
        try:
            raw = await _run_chain(
                run_alignment_scoring_chain,
                concept_label=concept.label,
                concept_description=concept.description,
                d1_text=format_elements(concept.d1_elements, self.content_limit),
                d1_count=len(concept.d1_elements),
                d2_text=format_elements(concept.d2_elements, self.content_limit),
                d2_count=len(concept.d2_elements),
            )
            cell = ScoredCell(
                concept_label=concept.label,
                polarity=float(raw.get("polarity", 0.0)),
                rationale=str(raw.get("rationale", "")),
            )
        except Exception as e:
            logger.error("local_scoring_failed", concept=concept.label, error=str(e))
            return ScoringResponse(success=False, error=f"{type(e).__name__}: {e}")

        return ScoringResponse(success=True, cells=[cell])


class LocalVennOracle(VennOracle):
    """Mirrors the request's own partition back as the oracle result."""

    async def generate(self, request: VennRequest) -> AsyncIterator[StreamEvent]:
        yield ProgressEvent(message="Partitioning concepts locally", percent=50)

        def items(refs: list[VennConceptRef]) -> list[dict]:
            return [{"label": r.label, "description": r.description} for r in refs]

        yield ResultEvent(
            data={
                "unique_to_d1": items(request.unmerged_d1),
                "aligned": items(request.merged_concepts),
                "unique_to_d2": items(request.unmerged_d2),
                "summary": {},
            }
        )


def create_local_oracles(settings: Settings, content_limit: Optional[int] = None) -> OracleSuite:
    """Build the LangChain-backed oracles."""
    limit = content_limit or settings.element_description_limit
    return OracleSuite(
        extraction=LocalExtractionOracle(limit),
        merge=LocalMergeOracle(settings),
        scoring=LocalScoringOracle(limit),
        venn=LocalVennOracle(),
    )
