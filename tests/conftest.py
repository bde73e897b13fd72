"""Pytest configuration and fixtures."""

from types import SimpleNamespace
from typing import AsyncIterator, Callable, Optional

import pytest

from concept_alignment.config.settings import Settings
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
    ScoringRequest,
    ScoringResponse,
    StreamEvent,
    VennRequest,
)
from concept_alignment.oracles.base import (
    ExtractionOracle,
    MergeOracle,
    OracleSuite,
    ScoringOracle,
    VennOracle,
)
from concept_alignment.pipeline.errors import OracleError


# =============================================================================
# Fake oracles
# =============================================================================

class FakeExtractionOracle(ExtractionOracle):
    """One concept per element by default; ``handler`` overrides per request."""

    def __init__(self, handler: Optional[Callable[[ExtractionRequest], ExtractionResponse]] = None):
        self.handler = handler
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        return ExtractionResponse(
            success=True,
            concepts=[
                ExtractedConceptPayload(label=el.label or el.id, description=el.content[:40], element_ids=[el.id])
                for el in request.elements
            ],
        )


class FakeMergeOracle(MergeOracle):
    """Replays scripted merge groups per round.

    ``plan`` maps a round number to a list of proposal dicts (wire format). A
    round listed in ``errors`` yields an error event instead.
    """

    def __init__(self, plan: Optional[dict[int, list[dict]]] = None, errors: Optional[dict[int, str]] = None):
        self.plan = plan or {}
        self.errors = errors or {}
        self.requests: list[MergeRequest] = []

    async def propose_merges(self, request: MergeRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        yield ProgressEvent(message=f"Round {request.round} started", percent=10)
        if request.round in self.errors:
            yield ErrorEvent(message=self.errors[request.round])
            return
        yield ResultEvent(data={"merges": self.plan.get(request.round, [])})


class FakeScoringOracle(ScoringOracle):
    """Scores by label; labels in ``fail`` return an unsuccessful response, in ``raise_on`` raise."""

    def __init__(
        self,
        polarities: Optional[dict[str, float]] = None,
        default: float = 0.8,
        fail: Optional[set[str]] = None,
        raise_on: Optional[set[str]] = None,
    ):
        self.polarities = polarities or {}
        self.default = default
        self.fail = fail or set()
        self.raise_on = raise_on or set()
        self.requests: list[ScoringRequest] = []

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        self.requests.append(request)
        label = request.concept.label
        if label in self.raise_on:
            raise OracleError(f"scoring transport failed for {label}", status_code=502)
        if label in self.fail:
            return ScoringResponse(success=False, errors=[f"could not score {label}"])
        polarity = self.polarities.get(label, self.default)
        return ScoringResponse(
            success=True,
            cells=[ScoredCell(concept_label=label, polarity=polarity, rationale=f"{label} scored")],
        )


class FakeVennOracle(VennOracle):
    def __init__(self, extra_d2: Optional[list[str]] = None, error: Optional[str] = None, no_result: bool = False):
        self.extra_d2 = extra_d2 or []
        self.error = error
        self.no_result = no_result
        self.requests: list[VennRequest] = []

    async def generate(self, request: VennRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        yield ProgressEvent(message="Generating venn", percent=50)
        if self.error:
            yield ErrorEvent(message=self.error)
            return
        if self.no_result:
            return
        yield ResultEvent(
            data={
                "unique_to_d1": [],
                "aligned": [],
                "unique_to_d2": [{"label": label, "description": f"{label} only in D2"} for label in self.extra_d2],
                "summary": {},
            }
        )


@pytest.fixture
def fakes() -> SimpleNamespace:
    """Fake oracle classes, for tests that need custom behaviour."""
    return SimpleNamespace(
        Extraction=FakeExtractionOracle,
        Merge=FakeMergeOracle,
        Scoring=FakeScoringOracle,
        Venn=FakeVennOracle,
        Suite=OracleSuite,
    )


@pytest.fixture
def fake_suite() -> OracleSuite:
    """Default fakes: one concept per element, no merges, polarity 0.8, no extra orphans."""
    return OracleSuite(
        extraction=FakeExtractionOracle(),
        merge=FakeMergeOracle(),
        scoring=FakeScoringOracle(),
        venn=FakeVennOracle(),
    )


# =============================================================================
# Settings and elements
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from any .env file, writing runs under tmp_path."""
    return Settings(_env_file=None, runs_dir=tmp_path / "runs")


def make_element(element_id: str, size: int = 10, label: Optional[str] = None) -> Element:
    return Element(id=element_id, label=label or element_id.upper(), content="x" * size)


@pytest.fixture
def element_factory() -> Callable[..., Element]:
    return make_element


@pytest.fixture
def d1_elements() -> list[Element]:
    return [
        Element(id="r1", label="User login", content="Users must log in with email and password."),
        Element(id="r2", label="Password reset", content="Users can reset a forgotten password by email."),
        Element(id="r3", label="Audit trail", content="Every admin action is recorded in an audit log."),
    ]


@pytest.fixture
def d2_elements() -> list[Element]:
    return [
        Element(id="f1", label="auth.py", content="def login(email, password): ..."),
        Element(id="f2", label="reset.py", content="def send_reset_email(user): ..."),
        Element(id="f3", label="metrics.py", content="def export_metrics(): ..."),
    ]


@pytest.fixture
def dataset_tags() -> tuple[DatasetTag, DatasetTag]:
    return DatasetTag.D1, DatasetTag.D2
