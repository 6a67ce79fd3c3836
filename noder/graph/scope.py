"""
Scope resolution: which part of a workflow a run touches.

A targeted run executes the target nodes and everything they transitively
depend on. Traversals are iterative with a visited set, so they terminate
on cyclic input (cycles are reported separately by ``find_cycle``).
"""

from collections import defaultdict, deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from noder.graph.edge import EdgeSpec
from noder.graph.node import NodeSpec


@dataclass
class ExecutionScope:
    """The nodes and edges a run operates on."""

    nodes: list[NodeSpec] = field(default_factory=list)
    edges: list[EdgeSpec] = field(default_factory=list)

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def __len__(self) -> int:
        return len(self.nodes)


def _closure(start_ids: Iterable[str], adjacency: dict[str, list[str]]) -> set[str]:
    visited: set[str] = set()
    stack = list(start_ids)
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        visited.add(node_id)
        stack.extend(n for n in adjacency.get(node_id, ()) if n not in visited)
    return visited


def upstream_closure(start_ids: Iterable[str], edges: Iterable[EdgeSpec]) -> set[str]:
    """The start ids plus every node they transitively depend on."""
    reverse: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        reverse[edge.target].append(edge.source)
    return _closure(start_ids, reverse)


def downstream_closure(start_ids: Iterable[str], edges: Iterable[EdgeSpec]) -> set[str]:
    """The start ids plus every node transitively reachable from them."""
    forward: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        forward[edge.source].append(edge.target)
    return _closure(start_ids, forward)


def resolve_scope(
    nodes: Sequence[NodeSpec],
    edges: Sequence[EdgeSpec],
    target_node_ids: Iterable[str] | None = None,
) -> ExecutionScope:
    """
    Restrict a graph to the upstream closure of the target nodes.

    With no targets (None or empty) the whole graph is in scope. Nodes keep
    the caller's order; an edge is kept only when both endpoints are in
    scope. Target ids that name no node contribute nothing.
    """
    targets = list(target_node_ids or [])
    known_ids = {n.id for n in nodes}

    if not targets:
        return ExecutionScope(
            nodes=list(nodes),
            edges=[e for e in edges if e.source in known_ids and e.target in known_ids],
        )

    needed = upstream_closure((t for t in targets if t in known_ids), edges) & known_ids
    return ExecutionScope(
        nodes=[n for n in nodes if n.id in needed],
        edges=[e for e in edges if e.source in needed and e.target in needed],
    )


def find_cycle(node_ids: Sequence[str], edges: Iterable[EdgeSpec]) -> list[str] | None:
    """
    Nodes that can never become ready because they sit on (or behind) a cycle.

    Returns None for an acyclic graph. Only edges between the given nodes count.
    """
    ids = set(node_ids)
    in_degree = dict.fromkeys(node_ids, 0)
    forward: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        if edge.source in ids and edge.target in ids:
            forward[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue = deque(n for n in node_ids if in_degree[n] == 0)
    visited = 0
    while queue:
        node_id = queue.popleft()
        visited += 1
        for target in forward[node_id]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)

    if visited == len(in_degree):
        return None
    return [n for n in node_ids if in_degree[n] > 0]
