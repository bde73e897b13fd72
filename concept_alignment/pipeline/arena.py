"""In-memory result arena owned by a single orchestrator run."""

from typing import Iterable, Optional

from concept_alignment.models import (
    Concept,
    DatasetTag,
    Element,
    ExtractedConcept,
    GraphEdge,
    GraphNode,
    MergeLogEntry,
    NodeType,
    TesseractCell,
    VennResult,
)


class PipelineArena:
    """Holds every entity produced by one run.

    All mutators are plain synchronous methods so that each one completes
    between two suspension points of the event loop; progress readers never
    observe a half-applied change. Nothing here is durable.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.nodes: dict[str, GraphNode] = {}
        self.edges: dict[str, GraphEdge] = {}
        self.element_nodes: dict[tuple[DatasetTag, str], str] = {}
        self.elements: dict[DatasetTag, dict[str, Element]] = {
            DatasetTag.D1: {},
            DatasetTag.D2: {},
        }
        self.raw_concepts: dict[DatasetTag, list[ExtractedConcept]] = {
            DatasetTag.D1: [],
            DatasetTag.D2: [],
        }
        self.concepts: list[Concept] = []
        self.merge_log: list[MergeLogEntry] = []
        self.next_concept_id: int = 1
        self.tesseract_cells: list[TesseractCell] = []
        self.venn_result: Optional[VennResult] = None

    # -------------------------------------------------------------------------
    # Graph
    # -------------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> GraphNode:
        self.nodes[node.id] = node
        return node

    def add_edge(self, edge: GraphEdge) -> GraphEdge:
        """Insert an edge; both endpoints must already exist."""
        for endpoint in (edge.source_node_id, edge.target_node_id):
            if endpoint not in self.nodes:
                raise ValueError(f"Edge {edge.id} references missing node {endpoint}")
        self.edges[edge.id] = edge
        return edge

    def remove_nodes(self, node_ids: Iterable[str]) -> tuple[int, int]:
        """Delete nodes and every edge touching them in one step.

        Returns:
            Tuple of (nodes_removed, edges_removed).
        """
        doomed = {node_id for node_id in node_ids if node_id in self.nodes}
        if not doomed:
            return 0, 0

        doomed_edges = [
            edge_id
            for edge_id, edge in self.edges.items()
            if edge.source_node_id in doomed or edge.target_node_id in doomed
        ]
        for edge_id in doomed_edges:
            del self.edges[edge_id]
        for node_id in doomed:
            del self.nodes[node_id]

        return len(doomed), len(doomed_edges)

    def dangling_edges(self) -> list[GraphEdge]:
        return [
            edge
            for edge in self.edges.values()
            if edge.source_node_id not in self.nodes or edge.target_node_id not in self.nodes
        ]

    def concept_nodes(self) -> list[GraphNode]:
        return [n for n in self.nodes.values() if n.node_type == NodeType.CONCEPT]

    def element_node_id(self, dataset: DatasetTag, element_id: str) -> Optional[str]:
        return self.element_nodes.get((dataset, element_id))

    # -------------------------------------------------------------------------
    # Concepts
    # -------------------------------------------------------------------------

    @property
    def active_concepts(self) -> list[Concept]:
        return [c for c in self.concepts if c.is_active]

    @property
    def all_raw_concepts(self) -> list[ExtractedConcept]:
        return [*self.raw_concepts[DatasetTag.D1], *self.raw_concepts[DatasetTag.D2]]

    def counts(self) -> dict[str, int]:
        return {
            "nodes": len(self.nodes),
            "edges": len(self.edges),
            "d1_concepts": len(self.raw_concepts[DatasetTag.D1]),
            "d2_concepts": len(self.raw_concepts[DatasetTag.D2]),
            "active_concepts": len(self.active_concepts),
            "cells": len(self.tesseract_cells),
        }
