"""Graph node and edge models."""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from .enums import EdgeType, NodeType


def new_graph_id() -> str:
    """Generate a unique id for a node, edge or cell."""
    return str(uuid.uuid4())


class GraphNode(BaseModel):
    """A node in the concept graph.

    Element nodes are created once per run and never removed. Concept nodes carry
    a lifecycle tag in ``metadata["tag"]`` (premerge, merged, gap, orphan).
    """

    id: str = Field(default_factory=new_graph_id)
    label: str
    description: str = ""
    node_type: NodeType
    source_dataset: str = Field(description="dataset1, dataset2 or both")
    source_element_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def tag(self) -> str | None:
        return self.metadata.get("tag")


class GraphEdge(BaseModel):
    """A directed edge from an element node to a concept node."""

    id: str = Field(default_factory=new_graph_id)
    source_node_id: str
    target_node_id: str
    edge_type: EdgeType
    weight: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)
