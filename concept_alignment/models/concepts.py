"""Concept models: extracted concepts, unified concepts with tombstones, merge audit log."""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import DatasetTag


class ExtractedConcept(BaseModel):
    """A concept as returned by one extraction batch, before any merging."""

    label: str
    description: str = ""
    element_ids: list[str] = Field(default_factory=list)
    dataset: DatasetTag


class Concept(BaseModel):
    """A unified concept tracked through merge rounds.

    A concept is active while ``remapped_to`` is unset. Merging never deletes a
    concept: the sources are tombstoned in place by pointing ``remapped_to`` at
    their successor.
    """

    id: str = Field(description="Monotonic token such as 'C12', never reused")
    label: str
    description: str = ""
    d1_ids: list[str] = Field(default_factory=list)
    d2_ids: list[str] = Field(default_factory=list)
    remapped_to: Optional[str] = Field(
        None, description="Successor concept id once this concept has been merged"
    )

    @property
    def is_active(self) -> bool:
        return self.remapped_to is None

    @property
    def has_d1(self) -> bool:
        return len(self.d1_ids) > 0

    @property
    def has_d2(self) -> bool:
        return len(self.d2_ids) > 0

    @property
    def is_aligned(self) -> bool:
        """True when the concept carries elements from both corpora."""
        return self.has_d1 and self.has_d2

    @property
    def element_ids(self) -> list[str]:
        return [*self.d1_ids, *self.d2_ids]


class MergeLogEntry(BaseModel):
    """Append-only audit record of one accepted merge group."""

    round: int = Field(ge=1)
    from_ids: list[str]
    from_labels: list[str]
    to_id: str
    to_label: str


class TombstoneError(ValueError):
    """Raised when a remap chain is broken or cyclic."""


def resolve_concept(concept_id: str, concepts_by_id: dict[str, Concept]) -> Concept:
    """Follow the ``remapped_to`` chain from ``concept_id`` to its active successor.

    Raises:
        TombstoneError: If the chain references an unknown id or loops.
    """
    seen: set[str] = set()
    current_id = concept_id
    while True:
        if current_id in seen:
            raise TombstoneError(f"Remap cycle detected starting at {concept_id}")
        seen.add(current_id)

        concept = concepts_by_id.get(current_id)
        if concept is None:
            raise TombstoneError(f"Unknown concept id in remap chain: {current_id}")
        if concept.is_active:
            return concept
        current_id = concept.remapped_to
