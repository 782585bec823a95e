"""
Exception hierarchy for graph-plan.

Every error raised by the engine derives from `GraphPlanError`, so callers
can catch the whole family at once. The errors fall into three groups:

- Input and graph errors (`InvalidValueError`, `DuplicateResourceError`,
  `UnresolvedReferenceError`, `CyclicDependencyError`) are raised before any
  mutation happens.
- API errors (`TransientAPIError`, `PermanentAPIError`) are raised by a
  `Provider` and handled by the executor: transient ones are retried,
  permanent ones fail a single operation and its dependents.
- `StateConflictError` aborts an apply because the persisted state changed
  underneath it.
"""

from typing import Any

__all__ = [
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


class GraphPlanError(Exception):
    """Base class for all graph-plan errors."""


class InvalidValueError(GraphPlanError):
    """An attribute value is not part of the value model.

    Attributes:
        path: Dotted location of the offending value, e.g.
            ``"aws_vpc.main.tags.Name"``.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class DuplicateResourceError(GraphPlanError):
    """Two resources in one set share an address."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"duplicate resource address {address!r}")


class UnresolvedReferenceError(GraphPlanError):
    """A reference could not be substituted with a concrete value.

    Raised when the referenced resource was never declared or materialized,
    when the attribute (or nested path) is missing, or when a context value
    was not supplied.

    Attributes:
        reference: The `Reference` or `ContextRef` that failed.
    """

    def __init__(self, reference: Any, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"cannot resolve {reference}: {reason}")


class CyclicDependencyError(GraphPlanError):
    """The dependency graph contains a cycle.

    Attributes:
        cycle: The resource chain forming the cycle. The first address is
            repeated at the end, e.g. ``("a.x", "b.y", "a.x")``.
    """

    def __init__(self, cycle: tuple[str, ...]) -> None:
        self.cycle = cycle
        super().__init__("dependency cycle: " + " -> ".join(cycle))


class APIError(GraphPlanError):
    """Base class for failures reported by a provider."""

    def __init__(self, message: str, address: str | None = None) -> None:
        self.address = address
        super().__init__(message)


class TransientAPIError(APIError):
    """Network, timeout or throttling failure; the call may be retried."""


class PermanentAPIError(APIError):
    """Non-retryable failure; the operation is marked failed."""


class StateConflictError(GraphPlanError):
    """The persisted state changed since it was loaded.

    The apply must be aborted and the state reloaded before planning again.
    """
