"""Tests for graph construction, cycle detection and ordering."""

import pytest

from graph_plan import (
    ContextRef,
    CyclicDependencyError,
    DependencyGraph,
    Reference,
    Resource,
    ResourceSet,
    StateRecord,
    UnresolvedReferenceError,
    build_graph,
)


def _ref(address: str, attribute: str = "id") -> Reference:
    return Reference(address, attribute)


class TestBuildGraph:
    """Tests for build_graph."""

    def test_edges_match_references(self, network: ResourceSet) -> None:
        """Edges should be exactly the attribute cross-references."""
        graph = build_graph(network)
        assert graph.edges() == {
            ("aws_subnet.public", "aws_vpc.main"),
            ("aws_subnet.private", "aws_vpc.main"),
            ("aws_security_group.web", "aws_vpc.main"),
        }

    def test_nested_references(self) -> None:
        """References inside nested values should create edges."""
        resources = ResourceSet(
            [
                Resource("a", "x", {}),
                Resource("b", "y", {}),
                Resource("c", "z", {"rules": [{"target": _ref("a.x")}], "m": {"k": _ref("b.y")}}),
            ]
        )
        assert build_graph(resources).dependencies("c.z") == {"a.x", "b.y"}

    def test_duplicate_references_single_edge(self) -> None:
        """Several references to one resource should give one edge."""
        resources = ResourceSet(
            [
                Resource("a", "x", {}),
                Resource("b", "y", {"p": _ref("a.x"), "q": _ref("a.x", "arn")}),
            ]
        )
        graph = build_graph(resources)
        assert graph.direct_dependencies("b.y") == ["a.x"]

    def test_depends_on_adds_edge(self) -> None:
        """Explicit depends_on should add an edge without a reference."""
        resources = ResourceSet(
            [
                Resource("aws_internet_gateway", "igw", {}),
                Resource("aws_instance", "fw", {}, depends_on=("aws_internet_gateway.igw",)),
            ]
        )
        graph = build_graph(resources)
        assert graph.edges() == {("aws_instance.fw", "aws_internet_gateway.igw")}

    def test_reference_to_undeclared_resource(self) -> None:
        """A reference to an undeclared resource should fail."""
        resources = ResourceSet([Resource("b", "y", {"p": _ref("a.x")})])
        with pytest.raises(UnresolvedReferenceError):
            build_graph(resources)

    def test_depends_on_undeclared_resource(self) -> None:
        """depends_on naming an undeclared resource should fail."""
        resources = ResourceSet([Resource("b", "y", {}, depends_on=("a.x",))])
        with pytest.raises(UnresolvedReferenceError):
            build_graph(resources)

    def test_context_refs_create_no_edges(self) -> None:
        """Context references never create edges."""
        resources = ResourceSet([Resource("a", "x", {"region": ContextRef("region")})])
        assert build_graph(resources).edges() == set()


class TestCycleDetection:
    """Tests for cycle detection."""

    def test_two_node_cycle(self) -> None:
        """A two-node cycle should raise CyclicDependencyError."""
        resources = ResourceSet(
            [
                Resource("a", "x", {"p": _ref("b.y")}),
                Resource("b", "y", {"p": _ref("a.x")}),
            ]
        )
        with pytest.raises(CyclicDependencyError) as excinfo:
            build_graph(resources)
        assert excinfo.value.cycle == ("a.x", "b.y", "a.x")

    def test_self_reference(self) -> None:
        """A resource referencing itself is a cycle."""
        resources = ResourceSet([Resource("a", "x", {"p": _ref("a.x", "arn")})])
        with pytest.raises(CyclicDependencyError) as excinfo:
            build_graph(resources)
        assert excinfo.value.cycle == ("a.x", "a.x")

    def test_cycle_behind_acyclic_prefix(self) -> None:
        """Only the nodes of the cycle should be reported."""
        resources = ResourceSet(
            [
                Resource("root", "r", {"p": _ref("a.x")}),
                Resource("a", "x", {"p": _ref("b.y")}),
                Resource("b", "y", {"p": _ref("c.z")}),
                Resource("c", "z", {"p": _ref("a.x")}),
            ]
        )
        with pytest.raises(CyclicDependencyError) as excinfo:
            build_graph(resources)
        assert excinfo.value.cycle == ("a.x", "b.y", "c.z", "a.x")

    def test_cycle_report_is_deterministic(self) -> None:
        """The same cycle should be reported on every run."""
        resources = ResourceSet(
            [
                Resource("a", "x", {"p": _ref("b.y"), "q": _ref("c.z")}),
                Resource("b", "y", {"p": _ref("c.z")}),
                Resource("c", "z", {"p": _ref("a.x")}),
            ]
        )
        cycles = set()
        for _ in range(5):
            with pytest.raises(CyclicDependencyError) as excinfo:
                build_graph(resources)
            cycles.add(excinfo.value.cycle)
        assert cycles == {("a.x", "b.y", "c.z", "a.x")}

    def test_cycle_via_depends_on(self) -> None:
        """depends_on edges take part in cycle detection."""
        resources = ResourceSet(
            [
                Resource("a", "x", {}, depends_on=("b.y",)),
                Resource("b", "y", {"p": _ref("a.x")}),
            ]
        )
        with pytest.raises(CyclicDependencyError):
            build_graph(resources)

    def test_message_lists_chain(self) -> None:
        """The error message should show the chain."""
        error = CyclicDependencyError(("a.x", "b.y", "a.x"))
        assert "a.x -> b.y -> a.x" in str(error)


class TestOrdering:
    """Tests for topological order and waves."""

    def test_dependencies_first(self, network: ResourceSet) -> None:
        """Every node should come after its dependencies."""
        graph = build_graph(network)
        order = graph.topological_order()
        for node, dep in graph.edges():
            assert order.index(dep) < order.index(node)

    def test_ties_by_declaration_order(self) -> None:
        """Independent nodes keep declaration order."""
        resources = ResourceSet(
            [
                Resource("b", "later", {"p": _ref("a.first")}),
                Resource("c", "second", {}),
                Resource("a", "first", {}),
            ]
        )
        assert build_graph(resources).topological_order() == ["c.second", "a.first", "b.later"]

    def test_waves(self, network: ResourceSet) -> None:
        """Waves should group mutually independent nodes."""
        waves = build_graph(network).waves()
        assert waves == [
            ["aws_vpc.main"],
            ["aws_subnet.public", "aws_subnet.private", "aws_security_group.web"],
        ]

    def test_wave_is_longest_path(self) -> None:
        """A node's wave follows its deepest dependency."""
        resources = ResourceSet(
            [
                Resource("a", "x", {}),
                Resource("b", "y", {"p": _ref("a.x")}),
                Resource("c", "z", {"p": _ref("a.x"), "q": _ref("b.y")}),
            ]
        )
        assert build_graph(resources).waves() == [["a.x"], ["b.y"], ["c.z"]]

    def test_empty_graph(self) -> None:
        """An empty resource set has no waves."""
        graph = build_graph(ResourceSet())
        assert graph.waves() == []
        assert graph.topological_order() == []


class TestDependencyQueries:
    """Tests for dependencies, dependents and subgraphs."""

    @pytest.fixture
    def chain(self) -> DependencyGraph:
        return DependencyGraph(["a", "b", "c"], {"b": ["a"], "c": ["b"]})

    def test_direct_dependencies(self, chain: DependencyGraph) -> None:
        """dependencies() without transitive returns direct ones only."""
        assert chain.dependencies("c") == {"b"}

    def test_transitive_dependencies(self, chain: DependencyGraph) -> None:
        """dependencies(transitive=True) returns the closure."""
        assert chain.dependencies("c", transitive=True) == {"a", "b"}

    def test_dependents(self, chain: DependencyGraph) -> None:
        """dependents() walks edges the other way."""
        assert chain.dependents("a") == {"b"}
        assert chain.dependents("a", transitive=True) == {"b", "c"}

    def test_subgraph(self, chain: DependencyGraph) -> None:
        """subgraph() keeps only edges between kept nodes."""
        sub = chain.subgraph(["a", "c"])
        assert sub.nodes == ["a", "c"]
        assert sub.edges() == set()

    def test_unknown_edge_target(self) -> None:
        """Edges must point at known nodes."""
        with pytest.raises(KeyError):
            DependencyGraph(["a"], {"a": ["missing"]})

    def test_to_dot(self, chain: DependencyGraph) -> None:
        """to_dot() renders nodes and edges."""
        dot = chain.to_dot()
        assert dot.startswith("digraph {")
        assert '"c" -> "b";' in dot

    def test_from_state(self) -> None:
        """from_state() orders by declaration index and drops stale edges."""
        records = [
            StateRecord("b.y", "b", dependencies=("a.x", "gone.z"), declaration_index=1),
            StateRecord("a.x", "a", declaration_index=0),
        ]
        graph = DependencyGraph.from_state(records)
        assert graph.nodes == ["a.x", "b.y"]
        assert graph.edges() == {("b.y", "a.x")}
