"""
graph-plan: Plan and apply declarative resource graphs.

This package turns a declarative set of infrastructure resources into an
ordered, idempotent list of create / update / replace / destroy operations
and applies them against an external API. Resources reference each other's
attributes; those references become the edges of a dependency graph that
decides what can happen in parallel and what must wait.

Overview:
    The engine is built from five parts, leaf first:

    - Value model: `Reference`, `ContextRef`, `UNKNOWN`, `resolve`
    - Graph builder: `build_graph`, `DependencyGraph`
    - Planner: `Planner`, `Plan`, `Operation`, `Step`, `Action`
    - Executor: `Executor`, `ApplyReport`, backed by a `Provider`
    - State store: `MemoryStateStore`, `FileStateStore`

Installation:
    Install from PyPI::

        pip install graph-plan

Quick Start:
    Plan and apply a small network::

        from graph_plan import (
            Executor,
            InMemoryProvider,
            MemoryStateStore,
            Planner,
            Reference,
            Resource,
            ResourceSet,
        )

        resources = ResourceSet([
            Resource("aws_vpc", "main", {"cidr_block": "10.0.0.0/16"}),
            Resource(
                "aws_subnet",
                "public",
                {
                    "vpc_id": Reference("aws_vpc.main", "id"),
                    "cidr_block": "10.0.1.0/24",
                },
            ),
        ])

        store = MemoryStateStore()
        plan = Planner().plan(resources, store.load())
        print(plan.render())
        #   + aws_vpc.main
        #   + aws_subnet.public
        # Plan: 2 to add, 0 to change, 0 to replace, 0 to destroy.

        report = Executor(InMemoryProvider(), store).apply(plan)
        assert report.ok

        # Planning again against the updated state changes nothing
        assert not Planner().plan(resources, store.load()).has_changes

Replacement:
    Attributes listed as immutable in a `ResourceSchema` force a
    replacement when they change::

        from graph_plan import Planner, ResourceSchema, SchemaRegistry

        schemas = SchemaRegistry([
            ResourceSchema("aws_subnet", immutable=frozenset({"cidr_block"})),
        ])
        planner = Planner(schemas=schemas)

Exports:
    Values:
        - `Reference`, `ContextRef`, `UNKNOWN`, `ResolutionContext`
        - `resolve`, `find_references`, `values_equal`, `validate_value`

    Resources and graph:
        - `Resource`, `ResourceSet`, `ResourceSchema`, `SchemaRegistry`
        - `DependencyGraph`, `build_graph`

    Planning and execution:
        - `Planner`, `Plan`, `Operation`, `Step`, `AttributeChange`, `Action`
        - `Executor`, `ApplyReport`, `OperationResult`, `OperationStatus`
        - `Provider`, `InMemoryProvider`

    State:
        - `StateRecord`, `State`, `StateStore`, `MemoryStateStore`,
          `FileStateStore`

    Configuration and logging:
        - `EngineConfig`, `configure_logging`, `get_logger`

    Errors:
        - `GraphPlanError` and its subclasses
"""

from graph_plan._config import EngineConfig
from graph_plan._errors import (
    APIError,
    CyclicDependencyError,
    DuplicateResourceError,
    GraphPlanError,
    InvalidValueError,
    PermanentAPIError,
    StateConflictError,
    TransientAPIError,
    UnresolvedReferenceError,
)
from graph_plan._executor import (
    ApplyReport,
    Executor,
    OperationResult,
    OperationStatus,
)
from graph_plan._graph import DependencyGraph, build_graph
from graph_plan._logging import configure_logging, get_logger
from graph_plan._plan import Action, AttributeChange, Operation, Plan, Planner, Step
from graph_plan._provider import InMemoryProvider, Provider
from graph_plan._resources import (
    Resource,
    ResourceSchema,
    ResourceSet,
    SchemaRegistry,
)
from graph_plan._state import (
    FileStateStore,
    MemoryStateStore,
    State,
    StateRecord,
    StateStore,
)
from graph_plan._values import (
    UNKNOWN,
    ContextRef,
    Reference,
    ResolutionContext,
    find_references,
    resolve,
    validate_value,
    values_equal,
)

__all__ = [
    # Values
    "Reference",
    "ContextRef",
    "UNKNOWN",
    "ResolutionContext",
    "resolve",
    "find_references",
    "values_equal",
    "validate_value",
    # Resources and graph
    "Resource",
    "ResourceSet",
    "ResourceSchema",
    "SchemaRegistry",
    "DependencyGraph",
    "build_graph",
    # Planning and execution
    "Action",
    "AttributeChange",
    "Operation",
    "Plan",
    "Step",
    "Planner",
    "Executor",
    "ApplyReport",
    "OperationResult",
    "OperationStatus",
    "Provider",
    "InMemoryProvider",
    # State
    "StateRecord",
    "State",
    "StateStore",
    "MemoryStateStore",
    "FileStateStore",
    # Configuration and logging
    "EngineConfig",
    "configure_logging",
    "get_logger",
    # Errors
    "GraphPlanError",
    "InvalidValueError",
    "DuplicateResourceError",
    "UnresolvedReferenceError",
    "CyclicDependencyError",
    "APIError",
    "TransientAPIError",
    "PermanentAPIError",
    "StateConflictError",
]

__version__ = "0.1.0"
