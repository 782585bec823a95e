"""
Dependency graph construction and ordering.

`build_graph` scans every resource's attributes for references and turns
them into edges: ``R1 -> R2`` means R1 references (depends on) R2. The
graph is checked for cycles eagerly, so a `DependencyGraph` that was
returned is always a DAG.

Key functions:

- `build_graph`: Build the graph of a `ResourceSet`
- `DependencyGraph.topological_order`: Dependencies first, ties broken by
  declaration order
- `DependencyGraph.waves`: Group nodes into mutually independent levels

Example:
    Ordering a small topology::

        from graph_plan import Reference, Resource, ResourceSet, build_graph

        resources = ResourceSet([
            Resource("aws_vpc", "main", {"cidr_block": "10.0.0.0/16"}),
            Resource("aws_subnet", "a", {"vpc_id": Reference("aws_vpc.main", "id")}),
        ])
        graph = build_graph(resources)
        graph.topological_order()  # ["aws_vpc.main", "aws_subnet.a"]
        graph.dependencies("aws_subnet.a")  # {"aws_vpc.main"}
"""

import heapq
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from graph_plan._errors import CyclicDependencyError, UnresolvedReferenceError
from graph_plan._logging import get_logger
from graph_plan._resources import ResourceSet
from graph_plan._values import find_references

if TYPE_CHECKING:
    from graph_plan._state import StateRecord

__all__ = [
    "DependencyGraph",
    "build_graph",
]

logger = get_logger(__name__)

_VISITING = 1
_DONE = 2


class DependencyGraph:
    """A directed acyclic graph of resource addresses.

    Nodes keep the order they were given in; that order breaks every tie,
    which makes all orderings deterministic.

    Args:
        nodes: Addresses in declaration order.
        edges: Mapping of address to the addresses it depends on. Every
            target must be one of ``nodes``.

    Raises:
        CyclicDependencyError: If the edges form a cycle.
    """

    def __init__(
        self, nodes: Iterable[str], edges: Mapping[str, Iterable[str]]
    ) -> None:
        self._nodes: list[str] = list(dict.fromkeys(nodes))
        self._index = {node: i for i, node in enumerate(self._nodes)}
        self._deps: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] = {node: [] for node in self._nodes}
        for node in self._nodes:
            deps = list(dict.fromkeys(edges.get(node, ())))
            for dep in deps:
                if dep not in self._index:
                    raise KeyError(f"{node} depends on unknown node {dep}")
                self._dependents[dep].append(node)
            self._deps[node] = deps

        cycle = self.find_cycle()
        if cycle is not None:
            raise CyclicDependencyError(cycle)

    @classmethod
    def from_state(cls, records: Iterable["StateRecord"]) -> "DependencyGraph":
        """Build the graph recorded in state, used to order destroys.

        Nodes are ordered by their recorded declaration index. Recorded
        dependencies that are no longer in state are dropped.
        """
        ordered = sorted(records, key=lambda r: r.declaration_index)
        known = {r.address for r in ordered}
        return cls(
            [r.address for r in ordered],
            {r.address: [d for d in r.dependencies if d in known] for r in ordered},
        )

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    def __contains__(self, address: object) -> bool:
        return address in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def index(self, address: str) -> int:
        return self._index[address]

    def direct_dependencies(self, address: str) -> list[str]:
        """Return the direct dependencies of a node in recorded order."""
        return list(self._deps[address])

    def dependencies(self, address: str, transitive: bool = False) -> set[str]:
        """Return the addresses a node depends on.

        Args:
            address: The node to analyze.
            transitive: If True, include dependencies of dependencies.
        """
        return self._walk(address, self._deps, transitive)

    def dependents(self, address: str, transitive: bool = False) -> set[str]:
        """Return the addresses that depend on a node."""
        return self._walk(address, self._dependents, transitive)

    @staticmethod
    def _walk(
        address: str, adjacency: Mapping[str, list[str]], transitive: bool
    ) -> set[str]:
        direct = set(adjacency[address])
        if not transitive:
            return direct

        visited: set[str] = set()
        to_visit = list(direct)
        while to_visit:
            current = to_visit.pop()
            if current in visited:
                continue
            visited.add(current)
            to_visit.extend(n for n in adjacency[current] if n not in visited)
        return visited

    def edges(self) -> set[tuple[str, str]]:
        """Return every edge as ``(dependent, dependency)``."""
        return {(node, dep) for node, deps in self._deps.items() for dep in deps}

    def find_cycle(self) -> tuple[str, ...] | None:
        """Return the first cycle found, or None.

        Depth-first search with recursion-stack tracking, visiting roots and
        edges in declaration order. The returned chain repeats its first
        node at the end.
        """
        state: dict[str, int] = {}
        for root in self._nodes:
            if root in state:
                continue
            state[root] = _VISITING
            path = [root]
            stack = [(root, iter(self._deps[root]))]
            while stack:
                node, children = stack[-1]
                for child in children:
                    seen = state.get(child)
                    if seen is None:
                        state[child] = _VISITING
                        path.append(child)
                        stack.append((child, iter(self._deps[child])))
                        break
                    if seen == _VISITING:
                        start = path.index(child)
                        return (*path[start:], child)
                else:
                    state[node] = _DONE
                    path.pop()
                    stack.pop()
        return None

    def topological_order(self) -> list[str]:
        """Return nodes with every dependency before its dependents.

        Kahn's algorithm; among ready nodes the earliest declared goes first.
        """
        remaining = {node: len(deps) for node, deps in self._deps.items()}
        ready = [self._index[n] for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            node = self._nodes[heapq.heappop(ready)]
            order.append(node)
            for dependent in self._dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, self._index[dependent])
        return order

    def waves(self) -> list[list[str]]:
        """Group nodes into levels of mutually independent nodes.

        A node's wave is one past the latest wave of its dependencies.
        """
        level: dict[str, int] = {}
        for node in self.topological_order():
            level[node] = 1 + max((level[d] for d in self._deps[node]), default=-1)

        count = max(level.values(), default=-1) + 1
        waves: list[list[str]] = [[] for _ in range(count)]
        for node in self._nodes:
            waves[level[node]].append(node)
        return waves

    def subgraph(self, addresses: Iterable[str]) -> "DependencyGraph":
        """Return the graph induced by a subset of nodes."""
        keep = set(addresses)
        nodes = [n for n in self._nodes if n in keep]
        return DependencyGraph(
            nodes, {n: [d for d in self._deps[n] if d in keep] for n in nodes}
        )

    def to_dot(self) -> str:
        """Render the graph in Graphviz DOT format."""
        lines = ["digraph {"]
        for node in self._nodes:
            lines.append(f'  "{node}";')
        for node in self._nodes:
            for dep in self._deps[node]:
                lines.append(f'  "{node}" -> "{dep}";')
        lines.append("}")
        return "\n".join(lines)


def build_graph(resources: ResourceSet) -> DependencyGraph:
    """Build the dependency graph of a resource set.

    An edge ``R1 -> R2`` is registered for every reference in R1's
    attributes that points at R2, and for every address in R1's
    ``depends_on``. Explicit ``depends_on`` edges only affect ordering;
    they do not change how attributes resolve.

    Args:
        resources: The desired resources, with unresolved attributes.

    Returns:
        An acyclic `DependencyGraph`.

    Raises:
        UnresolvedReferenceError: If a reference or ``depends_on`` entry
            names a resource that is not declared.
        CyclicDependencyError: If the references form a cycle.
    """
    edges: dict[str, list[str]] = {}
    for resource in resources:
        deps: list[str] = []
        for ref in find_references(dict(resource.attributes)):
            if ref.address not in resources:
                raise UnresolvedReferenceError(ref, "resource is not declared")
            deps.append(ref.address)
        for dep in resource.depends_on:
            if dep not in resources:
                raise UnresolvedReferenceError(dep, "depends_on target is not declared")
            deps.append(dep)
        edges[resource.address] = deps

    graph = DependencyGraph(resources.addresses, edges)
    logger.debug("graph_built", nodes=len(graph), edges=len(graph.edges()))
    return graph
