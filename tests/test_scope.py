"""
Tests for scope resolution.

Covers:
- full-graph identity when no targets are given
- upstream minimality for targeted runs (linear chain, diamond)
- edge filtering and caller node order
- downstream closure
- cycle detection and termination on cyclic input
"""

from noder.graph.edge import EdgeSpec, GraphSpec
from noder.graph.node import NodeSpec
from noder.graph.scope import downstream_closure, find_cycle, resolve_scope, upstream_closure


def _nodes(*ids: str) -> list[NodeSpec]:
    return [NodeSpec(id=node_id, type="text") for node_id in ids]


def _edges(*pairs: tuple[str, str]) -> list[EdgeSpec]:
    return [EdgeSpec(source=source, target=target) for source, target in pairs]


class TestResolveScope:
    def test_no_targets_returns_full_graph(self):
        nodes = _nodes("a", "b", "c")
        edges = _edges(("a", "b"), ("b", "c"))

        for targets in (None, []):
            scope = resolve_scope(nodes, edges, targets)
            assert scope.nodes == nodes
            assert scope.edges == edges

    def test_linear_chain_target_is_upstream_closure(self):
        nodes = _nodes("a", "b", "c")
        edges = _edges(("a", "b"), ("b", "c"))

        scope = resolve_scope(nodes, edges, ["b"])

        assert scope.node_ids == ["a", "b"]
        assert [(e.source, e.target) for e in scope.edges] == [("a", "b")]

    def test_diamond_target_excludes_unrelated_branch(self):
        # A -> B -> D, A -> C -> D, plus an unrelated E -> F
        nodes = _nodes("A", "B", "C", "D", "E", "F")
        edges = _edges(("A", "B"), ("A", "C"), ("B", "D"), ("C", "D"), ("E", "F"))

        scope = resolve_scope(nodes, edges, ["D"])

        assert scope.node_ids == ["A", "B", "C", "D"]
        assert len(scope.edges) == 4
        assert all(e.source in "ABCD" and e.target in "ABCD" for e in scope.edges)

    def test_preserves_caller_order(self):
        nodes = _nodes("c", "a", "b")
        edges = _edges(("a", "b"), ("b", "c"))

        scope = resolve_scope(nodes, edges, ["c"])

        assert scope.node_ids == ["c", "a", "b"]

    def test_every_scoped_edge_has_both_endpoints_in_scope(self):
        nodes = _nodes("a", "b", "c", "d")
        edges = _edges(("a", "b"), ("c", "b"), ("b", "d"), ("a", "d"))

        scope = resolve_scope(nodes, edges, ["b"])

        ids = set(scope.node_ids)
        assert ids == {"a", "b", "c"}
        assert all(e.source in ids and e.target in ids for e in scope.edges)

    def test_unknown_target_contributes_nothing(self):
        nodes = _nodes("a", "b")
        edges = _edges(("a", "b"))

        scope = resolve_scope(nodes, edges, ["missing"])

        assert scope.nodes == []
        assert scope.edges == []

    def test_full_graph_drops_dangling_edges(self):
        nodes = _nodes("a", "b")
        edges = _edges(("a", "b"), ("ghost", "b"))

        scope = resolve_scope(nodes, edges, None)

        assert [(e.source, e.target) for e in scope.edges] == [("a", "b")]

    def test_terminates_on_cycle(self):
        nodes = _nodes("a", "b", "c")
        edges = _edges(("a", "b"), ("b", "a"), ("b", "c"))

        scope = resolve_scope(nodes, edges, ["c"])

        assert set(scope.node_ids) == {"a", "b", "c"}


class TestClosures:
    def test_downstream_closure_includes_start(self):
        edges = _edges(("a", "b"), ("b", "c"), ("x", "y"))

        assert downstream_closure(["a"], edges) == {"a", "b", "c"}
        assert downstream_closure(["c"], edges) == {"c"}

    def test_downstream_closure_of_several_starts(self):
        edges = _edges(("a", "b"), ("c", "d"))

        assert downstream_closure({"a", "c"}, edges) == {"a", "b", "c", "d"}

    def test_upstream_closure_diamond(self):
        edges = _edges(("A", "B"), ("A", "C"), ("B", "D"), ("C", "D"))

        assert upstream_closure(["D"], edges) == {"A", "B", "C", "D"}
        assert upstream_closure(["B"], edges) == {"A", "B"}


class TestFindCycle:
    def test_acyclic_graph(self):
        edges = _edges(("a", "b"), ("a", "c"), ("b", "c"))

        assert find_cycle(["a", "b", "c"], edges) is None

    def test_reports_nodes_on_cycle(self):
        edges = _edges(("a", "b"), ("b", "c"), ("c", "b"))

        cycle = find_cycle(["a", "b", "c"], edges)

        assert cycle == ["b", "c"]

    def test_self_loop(self):
        assert find_cycle(["a"], _edges(("a", "a"))) == ["a"]

    def test_graph_spec_validate_reports_problems(self):
        graph = GraphSpec(
            nodes=_nodes("a", "b", "a"),
            edges=_edges(("a", "b"), ("b", "a"), ("a", "ghost")),
        )

        errors = graph.validate()

        assert any("Duplicate node id 'a'" in e for e in errors)
        assert any("Edge target 'ghost' not found" in e for e in errors)
        assert any("Cycle detected" in e for e in errors)
