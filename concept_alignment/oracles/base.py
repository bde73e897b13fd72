"""Abstract oracle interfaces.

The pipeline talks to four external collaborators. Extraction and scoring are
request/response; merge and venn are streamed and yield typed events.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from concept_alignment.models import (
    ExtractionRequest,
    ExtractionResponse,
    MergeRequest,
    ScoringRequest,
    ScoringResponse,
    StreamEvent,
    VennRequest,
)


class ExtractionOracle(ABC):
    """Extracts concepts from one batch of elements."""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        ...


class MergeOracle(ABC):
    """Proposes merge groups over the active concepts of one round."""

    @abstractmethod
    def propose_merges(self, request: MergeRequest) -> AsyncIterator[StreamEvent]:
        """Yield progress events followed by one result (or an error) event."""


class ScoringOracle(ABC):
    """Scores how well the D2 elements of a concept implement its D1 elements."""

    @abstractmethod
    async def score(self, request: ScoringRequest) -> ScoringResponse:
        ...


class VennOracle(ABC):
    """Produces an independent coverage partition used to surface extra orphans."""

    @abstractmethod
    def generate(self, request: VennRequest) -> AsyncIterator[StreamEvent]:
        """Yield progress events followed by one result (or an error) event."""


@dataclass
class OracleSuite:
    """The collaborators a run needs. The venn oracle is optional.

    ``transport`` is the shared client (if any) the oracles were built on; it
    is closed by ``aclose``.
    """

    extraction: ExtractionOracle
    merge: MergeOracle
    scoring: ScoringOracle
    venn: Optional[VennOracle] = None
    transport: Optional[Any] = None

    async def aclose(self) -> None:
        if self.transport is not None:
            await self.transport.aclose()
