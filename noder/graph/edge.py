"""
Edge Protocol - how nodes connect in a workflow graph.

An edge carries the source node's output into one input handle of the
target node. Several edges may feed the same target handle; the target
then receives a list of values in edge order.
"""

from typing import Any

from pydantic import BaseModel, Field

from noder.graph.node import NodeSpec

DEFAULT_HANDLE = "default"


class EdgeSpec(BaseModel):
    """
    A directed connection between two nodes.

    Examples:
        EdgeSpec(source="prompt", target="render", target_handle="prompt-in")
        EdgeSpec(source="render", target="upscale", source_handle="out", target_handle="image-in")
    """

    id: str | None = None
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_handle: str = Field(default="out", description="Output handle on the source")
    target_handle: str = Field(default=DEFAULT_HANDLE, description="Input handle on the target")

    model_config = {"extra": "allow"}


class GraphSpec(BaseModel):
    """
    A workflow: nodes plus the edges between them.

    The executor writes run results back onto the node objects, so one
    GraphSpec instance is meant to be reused across runs and resumes.
    """

    id: str = "workflow"
    nodes: list[NodeSpec] = Field(default_factory=list, description="All nodes")
    edges: list[EdgeSpec] = Field(default_factory=list, description="All edges")
    description: str = ""

    model_config = {"extra": "allow"}

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges leaving a node."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        """Get all edges entering a node."""
        return [e for e in self.edges if e.target == node_id]

    def find_cycle(self) -> list[str] | None:
        """Node ids on a cycle, or None if the graph is acyclic."""
        from noder.graph.scope import find_cycle

        return find_cycle([n.id for n in self.nodes], self.edges)

    def validate(self) -> list[str]:
        """
        Validate the graph structure.

        Returns:
            List of error messages (empty if valid)
        """
        errors: list[str] = []
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        for edge in self.edges:
            if edge.source not in seen:
                errors.append(f"Edge source '{edge.source}' not found")
            if edge.target not in seen:
                errors.append(f"Edge target '{edge.target}' not found")

        cycle = self.find_cycle()
        if cycle:
            errors.append(f"Cycle detected involving nodes: {', '.join(cycle)}")

        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GraphSpec":
        """Load a graph document; accepts camelCase edge handle keys."""
        edges = []
        for raw in data.get("edges", []):
            edge = dict(raw)
            if "sourceHandle" in edge:
                edge.setdefault("source_handle", edge.pop("sourceHandle") or "out")
            if "targetHandle" in edge:
                edge.setdefault("target_handle", edge.pop("targetHandle") or DEFAULT_HANDLE)
            edges.append(edge)
        return cls.model_validate({**data, "edges": edges})
