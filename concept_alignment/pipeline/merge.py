"""Multi-round concept merging with tombstones and a conservation check.

Each round sends the active concepts to the merge oracle, validates the
proposed groups, and applies the accepted ones: a new concept is created per
group and the sources are tombstoned by pointing ``remapped_to`` at it.
Nothing is ever deleted, so any historical id resolves to its final survivor.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from concept_alignment.config.settings import Settings
from concept_alignment.models import (
    Concept,
    DatasetTag,
    ExtractedConcept,
    MergeConceptRef,
    MergeLogEntry,
    MergeOraclePayload,
    MergeProposal,
    MergeRequest,
)
from concept_alignment.oracles.base import MergeOracle
from concept_alignment.pipeline.errors import (
    ConservationError,
    MergeOracleError,
    OracleError,
    PipelineAbort,
)

logger = structlog.get_logger(__name__)


def format_concept_id(number: int) -> str:
    return f"C{number}"


def build_unified_concepts(
    extracted: list[ExtractedConcept], start: int = 1
) -> tuple[list[Concept], int]:
    """Give every extracted concept a unified id and split its elements by dataset.

    Returns:
        Tuple of (concepts, next_id).
    """
    concepts = []
    next_id = start
    for item in extracted:
        concepts.append(
            Concept(
                id=format_concept_id(next_id),
                label=item.label,
                description=item.description,
                d1_ids=list(item.element_ids) if item.dataset == DatasetTag.D1 else [],
                d2_ids=list(item.element_ids) if item.dataset == DatasetTag.D2 else [],
            )
        )
        next_id += 1
    return concepts, next_id


def element_multiset(concepts: list[Concept]) -> Counter:
    """Multiset of (dataset, element id) pairs held by the active concepts."""
    held: Counter = Counter()
    for concept in concepts:
        if not concept.is_active:
            continue
        held.update((DatasetTag.D1, eid) for eid in concept.d1_ids)
        held.update((DatasetTag.D2, eid) for eid in concept.d2_ids)
    return held


def check_conservation(before: Counter, after: Counter, round_number: int) -> None:
    """Raise if a round gained or lost any element reference."""
    if before == after:
        return
    lost = before - after
    gained = after - before
    raise ConservationError(
        f"Round {round_number} changed element coverage: "
        f"lost={sorted(str(eid) for _, eid in lost)} gained={sorted(str(eid) for _, eid in gained)}"
    )


@dataclass
class MergeRoundResult:
    round_number: int
    entries: list[MergeLogEntry] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    skipped: bool = False
    input_active: int = 0
    output_active: int = 0


def apply_merge_round(
    concepts: list[Concept],
    proposals: list[MergeProposal],
    round_number: int,
    next_id: int,
) -> tuple[MergeRoundResult, int]:
    """Validate proposals and apply the accepted groups to ``concepts`` in place.

    Validation, per proposal and in order:
    - ids that are unknown, already tombstoned or repeated are ignored
    - an id already consumed by an earlier group this round is ignored
    - a group with fewer than two remaining ids is rejected; its lone member
      stays available to later groups

    Returns:
        Tuple of (round result, next_id).
    """
    by_id = {c.id: c for c in concepts}
    result = MergeRoundResult(
        round_number=round_number,
        input_active=sum(1 for c in concepts if c.is_active),
    )
    consumed: set[str] = set()

    for proposal in proposals:
        members: list[Concept] = []
        member_ids: set[str] = set()
        for source_id in proposal.source_ids:
            if source_id in consumed:
                logger.debug("merge_id_already_consumed", concept_id=source_id, round=round_number)
                continue
            concept = by_id.get(source_id)
            if concept is None or not concept.is_active or source_id in member_ids:
                continue
            members.append(concept)
            member_ids.add(source_id)

        if len(members) < 2:
            result.rejected.append(
                f"'{proposal.merged_label}': {len(members)} valid source(s) of {len(proposal.source_ids)}"
            )
            continue

        merged = Concept(
            id=format_concept_id(next_id),
            label=proposal.merged_label,
            description=proposal.merged_description,
            d1_ids=[eid for m in members for eid in m.d1_ids],
            d2_ids=[eid for m in members for eid in m.d2_ids],
        )
        next_id += 1

        for member in members:
            member.remapped_to = merged.id
            consumed.add(member.id)
        concepts.append(merged)
        by_id[merged.id] = merged

        result.entries.append(
            MergeLogEntry(
                round=round_number,
                from_ids=[m.id for m in members],
                from_labels=[m.label for m in members],
                to_id=merged.id,
                to_label=merged.label,
            )
        )

    result.output_active = sum(1 for c in concepts if c.is_active)
    return result, next_id


RoundCallback = Callable[[MergeRoundResult], None]
ProgressCallback = Callable[[str], None]


class MergeEngine:
    """Runs the configured number of merge rounds against a merge oracle."""

    def __init__(self, oracle: MergeOracle, settings: Settings):
        self.oracle = oracle
        self.settings = settings

    def build_request(self, concepts: list[Concept], round_number: int, total_rounds: int) -> MergeRequest:
        policy = self.settings.round_policy(round_number)
        return MergeRequest(
            concepts=[
                MergeConceptRef(id=c.id, label=c.label, description=c.description)
                for c in concepts
                if c.is_active
            ],
            round=round_number,
            total_rounds=total_rounds,
            criteria=policy.criteria,
            target_count=policy.target_count,
        )

    async def request_proposals(
        self, request: MergeRequest, on_progress: Optional[ProgressCallback] = None
    ) -> list[MergeProposal]:
        """Consume one streamed oracle response and return its merge proposals.

        Raises:
            MergeOracleError: On an error event, a transport failure, a malformed
                result or a stream that ends without a result.
        """
        payload: Optional[MergeOraclePayload] = None
        try:
            async for event in self.oracle.propose_merges(request):
                if event.event == "progress":
                    if on_progress and event.message:
                        on_progress(event.message)
                elif event.event == "result":
                    payload = MergeOraclePayload.model_validate(event.data)
                elif event.event == "error":
                    raise MergeOracleError(f"Round {request.round}: {event.message}")
        except ValidationError as e:
            raise MergeOracleError(f"Round {request.round}: malformed merge result: {e}") from e
        except OracleError as e:
            raise MergeOracleError(f"Round {request.round}: {e}") from e

        if payload is None:
            raise MergeOracleError(f"Round {request.round}: stream ended without a result")
        return payload.merges

    async def run_round(
        self,
        concepts: list[Concept],
        round_number: int,
        total_rounds: int,
        next_id: int,
        should_abort: Callable[[], bool] = lambda: False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[MergeRoundResult, int]:
        active = [c for c in concepts if c.is_active]
        if len(active) < 2:
            logger.info("merge_round_skipped", round=round_number, active=len(active))
            return (
                MergeRoundResult(
                    round_number=round_number,
                    skipped=True,
                    input_active=len(active),
                    output_active=len(active),
                ),
                next_id,
            )

        request = self.build_request(concepts, round_number, total_rounds)
        proposals = await self.request_proposals(request, on_progress)

        if should_abort():
            raise PipelineAbort()

        before = element_multiset(concepts)
        result, next_id = apply_merge_round(concepts, proposals, round_number, next_id)
        check_conservation(before, element_multiset(concepts), round_number)

        logger.info(
            "merge_round_complete",
            round=round_number,
            proposals=len(proposals),
            accepted=len(result.entries),
            rejected=len(result.rejected),
            active_before=result.input_active,
            active_after=result.output_active,
        )
        return result, next_id

    async def run(
        self,
        concepts: list[Concept],
        next_id: int,
        merge_log: list[MergeLogEntry],
        total_rounds: Optional[int] = None,
        should_abort: Callable[[], bool] = lambda: False,
        on_round: Optional[RoundCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Run rounds 1..total_rounds, mutating ``concepts`` and ``merge_log``.

        Returns:
            The next free concept number.
        """
        total_rounds = total_rounds or self.settings.merge_total_rounds
        for round_number in range(1, total_rounds + 1):
            if should_abort():
                raise PipelineAbort()
            result, next_id = await self.run_round(
                concepts, round_number, total_rounds, next_id, should_abort, on_progress
            )
            merge_log.extend(result.entries)
            if on_round:
                on_round(result)
        return next_id
