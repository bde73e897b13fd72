"""Graph construction: element nodes, concept nodes and their edges."""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from concept_alignment.models import (
    Concept,
    ConceptTag,
    DatasetTag,
    Element,
    ExtractedConcept,
    GraphEdge,
    GraphNode,
    NodeType,
)
from concept_alignment.pipeline.arena import PipelineArena

logger = structlog.get_logger(__name__)


def classify_concept(concept: Concept) -> ConceptTag:
    """Final tag of a surviving concept from the datasets it spans."""
    if concept.is_aligned:
        return ConceptTag.MERGED
    if concept.has_d1:
        return ConceptTag.GAP
    return ConceptTag.ORPHAN


@dataclass
class GraphRebuildResult:
    """Outcome of replacing the premerge concept nodes with the final ones."""

    nodes_removed: int = 0
    edges_removed: int = 0
    concept_nodes: list[tuple[Concept, GraphNode]] = field(default_factory=list)
    used_fallback: bool = False

    def count(self, tag: ConceptTag) -> int:
        return sum(1 for _, node in self.concept_nodes if node.tag == tag.value)


class GraphBuilder:
    """Adds nodes and edges to a run's arena.

    Every method here is synchronous and leaves the graph without dangling
    edges when it returns.
    """

    def __init__(self, arena: PipelineArena, description_limit: int = 2000):
        self.arena = arena
        self.description_limit = description_limit

    # -------------------------------------------------------------------------
    # Element nodes
    # -------------------------------------------------------------------------

    def create_element_nodes(self, dataset: DatasetTag, elements: Sequence[Element]) -> int:
        """Create one node per input element and index it by (dataset, element id)."""
        created = 0
        for element in elements:
            self.arena.elements[dataset][element.id] = element
            key = (dataset, element.id)
            if key in self.arena.element_nodes:
                logger.warning("duplicate_element_id", dataset=dataset.value, element_id=element.id)
                continue

            node = GraphNode(
                label=element.label or element.id,
                description=(element.content or "")[: self.description_limit],
                node_type=NodeType.ELEMENT,
                source_dataset=dataset.source_dataset,
                source_element_ids=[element.id],
                metadata={
                    "original_element_id": element.id,
                    "category": element.category,
                    "dataset": dataset.value,
                },
            )
            self.arena.add_node(node)
            self.arena.element_nodes[key] = node.id
            created += 1
        return created

    # -------------------------------------------------------------------------
    # Concept nodes
    # -------------------------------------------------------------------------

    def add_premerge_concept(self, concept: ExtractedConcept) -> GraphNode:
        """Add a per-batch concept node linked to the elements of its own dataset."""
        links = [(concept.dataset, element_id) for element_id in concept.element_ids]
        return self._add_concept_node(
            label=concept.label,
            description=concept.description,
            source_dataset=concept.dataset.source_dataset,
            links=links,
            metadata={"tag": ConceptTag.PREMERGE.value},
        )

    def add_final_concept(self, concept: Concept) -> GraphNode:
        """Add the node for a surviving concept, tagged merged, gap or orphan."""
        tag = classify_concept(concept)
        if tag == ConceptTag.MERGED:
            source_dataset = "both"
        elif tag == ConceptTag.GAP:
            source_dataset = DatasetTag.D1.source_dataset
        else:
            source_dataset = DatasetTag.D2.source_dataset

        links = [(DatasetTag.D1, eid) for eid in concept.d1_ids]
        links += [(DatasetTag.D2, eid) for eid in concept.d2_ids]

        return self._add_concept_node(
            label=concept.label,
            description=concept.description,
            source_dataset=source_dataset,
            links=links,
            metadata={
                "tag": tag.value,
                "concept_id": concept.id,
                "d1_count": len(concept.d1_ids),
                "d2_count": len(concept.d2_ids),
            },
        )

    def _add_concept_node(
        self,
        label: str,
        description: str,
        source_dataset: str,
        links: list[tuple[DatasetTag, str]],
        metadata: dict[str, Any],
    ) -> GraphNode:
        node = GraphNode(
            label=label,
            description=description,
            node_type=NodeType.CONCEPT,
            source_dataset=source_dataset,
            source_element_ids=[eid for _, eid in links],
            metadata=metadata,
        )
        self.arena.add_node(node)

        linked: set[str] = set()
        for dataset, element_id in links:
            element_node_id = self.arena.element_node_id(dataset, element_id)
            if element_node_id is None:
                logger.debug(
                    "edge_skipped_unknown_element",
                    dataset=dataset.value,
                    element_id=element_id,
                    concept=label,
                )
                continue
            if element_node_id in linked:
                continue
            linked.add(element_node_id)
            self.arena.add_edge(
                GraphEdge(
                    source_node_id=element_node_id,
                    target_node_id=node.id,
                    edge_type=dataset.edge_type,
                )
            )
        return node

    # -------------------------------------------------------------------------
    # Rebuild
    # -------------------------------------------------------------------------

    def prune_premerge(self) -> tuple[int, int]:
        """Remove every premerge concept node and all edges touching them."""
        premerge_ids = [
            node.id
            for node in self.arena.concept_nodes()
            if node.tag == ConceptTag.PREMERGE.value
        ]
        return self.arena.remove_nodes(premerge_ids)

    def rebuild(
        self,
        final_concepts: list[Concept],
        raw_concepts: Optional[list[ExtractedConcept]] = None,
    ) -> GraphRebuildResult:
        """Replace premerge concept nodes with one node per surviving concept.

        When no concept survived but extraction did produce concepts, the raw
        concepts pass through one-to-one so the graph is never left without
        concepts; the synthesized concepts are appended to the arena history.
        """
        result = GraphRebuildResult()
        result.nodes_removed, result.edges_removed = self.prune_premerge()

        concepts = final_concepts
        if not concepts and raw_concepts:
            concepts = self._pass_through(raw_concepts)
            result.used_fallback = True
            logger.warning("graph_rebuild_fallback", raw_concepts=len(raw_concepts))

        for concept in concepts:
            node = self.add_final_concept(concept)
            result.concept_nodes.append((concept, node))

        dangling = self.arena.dangling_edges()
        if dangling:
            raise RuntimeError(f"Graph rebuild left {len(dangling)} dangling edges")

        logger.info(
            "graph_rebuilt",
            nodes_removed=result.nodes_removed,
            edges_removed=result.edges_removed,
            concept_nodes=len(result.concept_nodes),
            merged=result.count(ConceptTag.MERGED),
            gaps=result.count(ConceptTag.GAP),
            orphans=result.count(ConceptTag.ORPHAN),
        )
        return result

    def _pass_through(self, raw_concepts: list[ExtractedConcept]) -> list[Concept]:
        concepts = []
        for raw in raw_concepts:
            concept = Concept(
                id=f"C{self.arena.next_concept_id}",
                label=raw.label,
                description=raw.description,
                d1_ids=list(raw.element_ids) if raw.dataset == DatasetTag.D1 else [],
                d2_ids=list(raw.element_ids) if raw.dataset == DatasetTag.D2 else [],
            )
            self.arena.next_concept_id += 1
            self.arena.concepts.append(concept)
            concepts.append(concept)
        return concepts
