"""
Planning: diff desired resources against state and order the operations.

The `Planner` walks the desired resources in dependency order, fills
schema defaults, resolves references against what is already known and
compares the result with the last `StateRecord`:

- not in state: ``create``
- in state, nothing changed: ``no-op``
- in state, an immutable attribute changed: ``replace``
- in state, only mutable attributes changed: ``update``
- in state, no longer desired: ``destroy``

The resulting `Plan` is a DAG of steps. Every operation is one step except
a replacement, which is two: deleting the old object and creating the new
one. Creates, updates and the create half of a replacement come after the
steps of their dependencies; deletes come after the deletes of their
dependents, i.e. in reverse dependency order. The old object of a
create-before-destroy replacement is only deleted once everything that
used it has moved on. Ties are broken by declaration order, and among
independent steps deletes go first.

Example:
    Planning from an empty state::

        from graph_plan import Planner, Reference, Resource, ResourceSet, State

        resources = ResourceSet([
            Resource("aws_vpc", "main", {"cidr_block": "10.0.0.0/16"}),
            Resource("aws_subnet", "a", {"vpc_id": Reference("aws_vpc.main", "id")}),
        ])
        plan = Planner().plan(resources, State())
        [(op.action.value, op.address) for op in plan]
        # [("create", "aws_vpc.main"), ("create", "aws_subnet.a")]
        print(plan.render())
"""

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from graph_plan._config import EngineConfig
from graph_plan._errors import GraphPlanError
from graph_plan._graph import DependencyGraph, build_graph
from graph_plan._logging import get_logger
from graph_plan._resources import Resource, ResourceSet, SchemaRegistry
from graph_plan._state import State, StateRecord
from graph_plan._values import (
    ResolutionContext,
    format_value,
    resolve,
    to_json_value,
    values_equal,
)

__all__ = [
    "Action",
    "AttributeChange",
    "Operation",
    "Plan",
    "Planner",
    "Step",
]

logger = get_logger(__name__)

PLAN_FORMAT_VERSION = 1


class Action(str, Enum):
    """What an operation does to its resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


@dataclass(frozen=True)
class AttributeChange:
    """One attribute that differs between state and the desired value."""

    name: str
    before: Any
    after: Any
    forces_replacement: bool = False


@dataclass(frozen=True)
class Operation:
    """A planned change to one resource.

    Attributes:
        address: Resource address.
        action: The planned `Action`.
        type: Resource type.
        desired: Desired attributes with defaults filled in, references
            still unresolved. Empty for destroys.
        planned: Desired attributes as resolved at plan time; values that
            depend on pending operations are `UNKNOWN`.
        prior: The state record the plan was computed against.
        changes: Attribute differences for updates and replacements.
        dependencies: Direct dependencies of the resource.
        declaration_index: Position of the resource in its set.
        create_before_destroy: For replacements, whether the new object is
            created before the old one is deleted.
        ignore_changes: Attributes kept at their prior value.
    """

    address: str
    action: Action
    type: str
    desired: Mapping[str, Any]
    planned: Mapping[str, Any]
    prior: StateRecord | None = None
    changes: tuple[AttributeChange, ...] = ()
    dependencies: tuple[str, ...] = ()
    declaration_index: int = 0
    create_before_destroy: bool = False
    ignore_changes: tuple[str, ...] = ()

    @property
    def symbol(self) -> str:
        if self.action is Action.REPLACE:
            return "+/-" if self.create_before_destroy else "-/+"
        return _SYMBOLS[self.action]

    @property
    def stale_record(self) -> bool:
        """Whether a no-op's state record lists outdated dependencies or index.

        Applying such an operation rewrites the record without calling the
        provider, so later destroys are ordered by the current graph.
        """
        return (
            self.action is Action.NOOP
            and self.prior is not None
            and (
                self.prior.dependencies != self.dependencies
                or self.prior.declaration_index != self.declaration_index
            )
        )

    def steps(self) -> list["Step"]:
        """The provider-level steps of this operation, in execution order."""
        if self.action is not Action.REPLACE:
            return [Step(self, self.action)]
        halves = [Step(self, Action.DESTROY), Step(self, Action.CREATE)]
        return halves[::-1] if self.create_before_destroy else halves

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "type": self.type,
            "create_before_destroy": self.create_before_destroy,
            "dependencies": list(self.dependencies),
            "changes": [
                {
                    "name": change.name,
                    "before": to_json_value(change.before),
                    "after": to_json_value(change.after),
                    "forces_replacement": change.forces_replacement,
                }
                for change in self.changes
            ],
        }


_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.DESTROY: "-",
    Action.NOOP: " ",
}


@dataclass(frozen=True)
class Step:
    """One node of the plan graph.

    Attributes:
        operation: The operation the step belongs to.
        action: What the step does: ``CREATE``, ``UPDATE``, ``DESTROY`` or
            ``NOOP``. A replacement has a ``DESTROY`` and a ``CREATE`` step.
    """

    operation: Operation
    action: Action

    @property
    def address(self) -> str:
        return self.operation.address

    @property
    def key(self) -> str:
        """Unique name of the step in its plan.

        The address, except for the delete half of a replacement, which is
        ``"<address> (destroy)"``.
        """
        if self.operation.action is Action.REPLACE and self.action is Action.DESTROY:
            return f"{self.address} (destroy)"
        return self.address


def apply_ignore_changes(
    attributes: Mapping[str, Any],
    prior: StateRecord | None,
    ignore_changes: Iterable[str],
) -> dict[str, Any]:
    """Return attributes with ignored keys reset to their prior values."""
    result = dict(attributes)
    if prior is None:
        return result
    for name in ignore_changes:
        if name in prior.attributes:
            result[name] = prior.attributes[name]
        else:
            result.pop(name, None)
    return result


class Plan:
    """An ordered, dependency-aware list of operations.

    Iterating a plan yields operations in the order their first step runs,
    no-ops included. Use `changes` for the operations that actually do
    something and `steps` for the graph the executor walks.

    Args:
        steps: Steps in execution order.
        graph: Step graph keyed by `Step.key`; an edge ``a -> b`` means
            step ``a`` must wait for step ``b`` to finish.
    """

    def __init__(self, steps: list[Step], graph: DependencyGraph) -> None:
        self._steps = list(steps)
        self._by_key = {step.key: step for step in self._steps}
        self._by_address: dict[str, Operation] = {}
        for step in self._steps:
            self._by_address.setdefault(step.address, step.operation)
        self._operations = list(self._by_address.values())
        self._graph = graph

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __getitem__(self, address: str) -> Operation:
        return self._by_address[address]

    def __contains__(self, address: object) -> bool:
        return address in self._by_address

    @property
    def operations(self) -> list[Operation]:
        return list(self._operations)

    @property
    def changes(self) -> list[Operation]:
        """Operations other than no-ops, in execution order."""
        return [op for op in self._operations if op.action is not Action.NOOP]

    @property
    def has_changes(self) -> bool:
        return any(op.action is not Action.NOOP for op in self._operations)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def step(self, key: str) -> Step:
        return self._by_key[key]

    def requires(self, key: str) -> list[str]:
        """Keys of the steps that must finish before this one.

        For every operation but a replacement the key is its address.
        """
        return self._graph.direct_dependencies(key)

    def waves(self) -> list[list[Step]]:
        """Group steps into waves of mutually independent steps."""
        return [[self._by_key[key] for key in wave] for wave in self._graph.waves()]

    def summary(self) -> dict[str, int]:
        counts = {action.value: 0 for action in Action}
        for op in self._operations:
            counts[op.action.value] += 1
        return counts

    def render(self) -> str:
        """Human-readable description of the plan."""
        if not self.has_changes:
            return "No changes. Infrastructure matches the configuration."

        lines = ["The following actions will be performed:", ""]
        for op in self.changes:
            header = f"{op.symbol:>3} {op.address}"
            if op.action is Action.REPLACE:
                forced = [c.name for c in op.changes if c.forces_replacement]
                if forced:
                    header += f" (replacement forced by: {', '.join(forced)})"
            lines.append(header)
            if op.action is Action.CREATE:
                for name, value in op.planned.items():
                    lines.append(f"      {name}: {format_value(value)}")
            for change in op.changes:
                line = (
                    f"      {change.name}: {format_value(change.before)}"
                    f" -> {format_value(change.after)}"
                )
                if change.forces_replacement:
                    line += " (forces replacement)"
                lines.append(line)

        counts = self.summary()
        lines.append("")
        lines.append(
            f"Plan: {counts['create']} to add, {counts['update']} to change, "
            f"{counts['replace']} to replace, {counts['destroy']} to destroy."
        )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form of the plan; JSON-compatible."""
        wave_of = {
            step.key: i for i, wave in enumerate(self.waves()) for step in wave
        }
        operations = []
        for op in self._operations:
            data = op.to_dict()
            data["steps"] = [
                {
                    "key": step.key,
                    "action": step.action.value,
                    "requires": self.requires(step.key),
                    "wave": wave_of[step.key],
                }
                for step in op.steps()
            ]
            operations.append(data)
        return {
            "format_version": PLAN_FORMAT_VERSION,
            "summary": self.summary(),
            "operations": operations,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class Planner:
    """Computes a `Plan` from desired resources and state.

    Args:
        config: Engine configuration; supplies context values.
        schemas: Per-type defaults and immutable attributes.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.schemas = schemas or SchemaRegistry()

    def plan(
        self,
        resources: ResourceSet,
        state: State,
        targets: Iterable[str] | None = None,
        destroy: bool = False,
    ) -> Plan:
        """Plan the operations that turn ``state`` into ``resources``.

        Args:
            resources: The desired resource set.
            state: The state to diff against.
            targets: Optional addresses to limit planning to. Desired
                targets pull in their dependencies; destroyed targets pull
                in their dependents.
            destroy: Plan the destruction of everything in state (or of the
                targets and their dependents) instead.

        Returns:
            The `Plan`.

        Raises:
            CyclicDependencyError: If the desired resources form a cycle.
            UnresolvedReferenceError: If a reference cannot be resolved.
            GraphPlanError: If a target is neither declared nor in state.
        """
        graph = build_graph(resources)
        state_graph = DependencyGraph.from_state(state)
        target_set = self._check_targets(targets, resources, state)

        if destroy:
            planned_addresses: set[str] = set()
            destroy_addresses = self._destroy_scope(target_set, state, state_graph)
        else:
            planned_addresses = set(resources.addresses)
            if target_set is not None:
                planned_addresses = set()
                for target in target_set & set(resources.addresses):
                    planned_addresses |= {target, *graph.dependencies(target, True)}
            removed = {r.address for r in state if r.address not in resources}
            if target_set is not None:
                removed &= self._destroy_scope(target_set & removed, state, state_graph)
            destroy_addresses = removed

        operations: dict[str, Operation] = {}
        context = ResolutionContext(context=self.config.context)
        for address in graph.topological_order():
            if address in planned_addresses:
                operations[address] = self._plan_resource(
                    resources[address],
                    resources.index(address),
                    graph,
                    state.get(address),
                    context,
                )
        for address in destroy_addresses:
            operations[address] = self._plan_destroy(state.records[address])

        plan = self._order(operations, graph, state_graph)
        logger.info("plan_created", **plan.summary())
        return plan

    @staticmethod
    def _check_targets(
        targets: Iterable[str] | None, resources: ResourceSet, state: State
    ) -> set[str] | None:
        if targets is None:
            return None
        target_set = set(targets)
        for target in sorted(target_set):
            if target not in resources and target not in state:
                raise GraphPlanError(
                    f"target {target!r} is neither declared nor in state"
                )
        return target_set

    @staticmethod
    def _destroy_scope(
        targets: set[str] | None, state: State, state_graph: DependencyGraph
    ) -> set[str]:
        if targets is None:
            return {record.address for record in state}
        scope: set[str] = set()
        for target in targets & set(state.records):
            scope |= {target, *state_graph.dependents(target, True)}
        return scope

    def _plan_resource(
        self,
        resource: Resource,
        index: int,
        graph: DependencyGraph,
        prior: StateRecord | None,
        context: ResolutionContext,
    ) -> Operation:
        address = resource.address
        schema = self.schemas.get(resource.type)
        desired = schema.fill_defaults(resource.attributes)
        planned = apply_ignore_changes(
            resolve(desired, context), prior, resource.ignore_changes
        )
        cbd = resource.create_before_destroy
        if cbd is None:
            cbd = schema.create_before_destroy

        changes: tuple[AttributeChange, ...] = ()
        if prior is None:
            action = Action.CREATE
        elif prior.type != resource.type:
            action = Action.REPLACE
            changes = (AttributeChange("type", prior.type, resource.type, True),)
        else:
            changes = _diff(prior.attributes, planned, schema.immutable)
            if not changes:
                action = Action.NOOP
            elif any(change.forces_replacement for change in changes):
                action = Action.REPLACE
            else:
                action = Action.UPDATE

        if action in (Action.CREATE, Action.REPLACE) or prior is None:
            context.set_resource(address, planned, partial=True)
        else:
            context.set_resource(address, {**prior.values, **planned})

        logger.debug("resource_planned", address=address, action=action.value)
        return Operation(
            address=address,
            action=action,
            type=resource.type,
            desired=desired,
            planned=planned,
            prior=prior,
            changes=changes,
            dependencies=tuple(graph.direct_dependencies(address)),
            declaration_index=index,
            create_before_destroy=bool(cbd) and action is Action.REPLACE,
            ignore_changes=resource.ignore_changes,
        )

    @staticmethod
    def _plan_destroy(prior: StateRecord) -> Operation:
        return Operation(
            address=prior.address,
            action=Action.DESTROY,
            type=prior.type,
            desired={},
            planned={},
            prior=prior,
            dependencies=prior.dependencies,
            declaration_index=prior.declaration_index,
        )

    @staticmethod
    def _order(
        operations: Mapping[str, Operation],
        graph: DependencyGraph,
        state_graph: DependencyGraph,
    ) -> Plan:
        """Build the step graph and sort it into execution order."""
        operations = _inherit_create_before_destroy(operations)
        create_rank = {a: i for i, a in enumerate(graph.topological_order())}
        destroy_rank = {a: i for i, a in enumerate(state_graph.topological_order())}

        def priority(step: Step) -> tuple[int, int]:
            if step.action is Action.DESTROY:
                return (0, -destroy_rank[step.address])
            return (1, create_rank[step.address])

        steps = {op.address: op.steps() for op in operations.values()}
        delete_key: dict[str, str] = {}
        apply_key: dict[str, str] = {}
        for address, halves in steps.items():
            for step in halves:
                keys = delete_key if step.action is Action.DESTROY else apply_key
                keys[address] = step.key

        edges: dict[str, list[str]] = {}
        for op in operations.values():
            address = op.address
            if address in apply_key:
                requires = [apply_key[d] for d in op.dependencies if d in apply_key]
                if op.action is Action.REPLACE and not op.create_before_destroy:
                    requires.insert(0, delete_key[address])
                edges[apply_key[address]] = requires
            if address not in delete_key:
                continue

            # Users of the old object: dependents recorded in state, plus
            # desired dependents when the old object outlives its successor.
            users = [
                other
                for other in operations.values()
                if other.address != address
                and (
                    (other.prior is not None and address in other.prior.dependencies)
                    or (op.create_before_destroy and address in other.dependencies)
                )
            ]
            if op.action is Action.REPLACE and not op.create_before_destroy:
                # The new object needs this delete, so only old objects go first.
                requires = [delete_key[u.address] for u in users if u.address in delete_key]
            else:
                requires = [apply_key[address]] if address in apply_key else []
                for user in users:
                    requires += [s.key for s in steps[user.address]]
            edges[delete_key[address]] = requires

        nodes = [
            step.key
            for step in sorted(
                (s for halves in steps.values() for s in halves), key=priority
            )
        ]
        step_graph = DependencyGraph(nodes, edges)
        by_key = {s.key: s for halves in steps.values() for s in halves}
        return Plan([by_key[key] for key in step_graph.topological_order()], step_graph)


def _inherit_create_before_destroy(
    operations: Mapping[str, Operation],
) -> dict[str, Operation]:
    """Make replaced dependencies of create-before-destroy replacements follow suit.

    The old object of such a replacement stays until its successor exists,
    so the objects it uses must stay too.
    """
    result = dict(operations)
    pending = [
        op.address
        for op in result.values()
        if op.action is Action.REPLACE and op.create_before_destroy
    ]
    while pending:
        op = result[pending.pop()]
        prior_deps = op.prior.dependencies if op.prior is not None else ()
        for dep in (*op.dependencies, *prior_deps):
            other = result.get(dep)
            if (
                other is not None
                and other.action is Action.REPLACE
                and not other.create_before_destroy
            ):
                result[dep] = replace(other, create_before_destroy=True)
                pending.append(dep)
    return result


def _diff(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    immutable: Iterable[str],
) -> tuple[AttributeChange, ...]:
    forced = set(immutable)
    changes = []
    for name in dict.fromkeys([*after, *before]):
        old, new = before.get(name), after.get(name)
        if not values_equal(old, new):
            changes.append(AttributeChange(name, old, new, name in forced))
    return tuple(changes)
