"""
Value model for resource attributes.

Attribute values form a small discriminated union:

- literals: ``None``, ``bool``, ``int``, ``float``, ``str``
- collections: ``list`` (order matters) and ``dict`` with string keys
  (order does not matter for equality)
- `Reference`: a pointer to another resource's attribute
- `ContextRef`: a pointer to a named context value such as the region
- `UNKNOWN`: a plan-time placeholder for a value only known after apply

References are kept symbolic until `resolve` substitutes them in a single
pass, once the resources they point to are materialized.

Example:
    Declaring and resolving a reference::

        from graph_plan import Reference, ResolutionContext, resolve

        attrs = {"vpc_id": Reference("aws_vpc.main", "id"), "cidr": "10.0.1.0/24"}

        ctx = ResolutionContext({"aws_vpc.main": {"id": "vpc-123"}})
        resolve(attrs, ctx)  # {"vpc_id": "vpc-123", "cidr": "10.0.1.0/24"}
"""

import json
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from graph_plan._errors import InvalidValueError, UnresolvedReferenceError

__all__ = [
    "Reference",
    "ContextRef",
    "UNKNOWN",
    "ResolutionContext",
    "validate_value",
    "find_references",
    "resolve",
    "values_equal",
    "to_json_value",
    "from_json_value",
    "format_value",
]


@dataclass(frozen=True)
class Reference:
    """A pointer to an attribute of another resource.

    Attributes:
        address: Address of the referenced resource, ``"<type>.<name>"``.
        attribute: Name of the referenced attribute.
        path: Optional keys and indexes into a nested attribute value.

    Example:
        Referencing a nested value::

            Reference("aws_vpc.main", "id")
            Reference("aws_security_group.web", "tags", ("Name",))
            Reference.parse("aws_subnet.a.ipv6_cidrs.0")
    """

    address: str
    attribute: str
    path: tuple[str | int, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Reference":
        """Parse ``"<type>.<name>.<attribute>[.<key>...]"`` into a Reference.

        Path segments made of digits become list indexes.

        Raises:
            ValueError: If the text has fewer than three segments.
        """
        parts = text.split(".")
        if len(parts) < 3 or not all(parts):
            raise ValueError(f"invalid reference {text!r}")
        path = tuple(int(p) if p.isdigit() else p for p in parts[3:])
        return cls(f"{parts[0]}.{parts[1]}", parts[2], path)

    def __str__(self) -> str:
        return ".".join([self.address, self.attribute, *map(str, self.path)])


@dataclass(frozen=True)
class ContextRef:
    """A pointer to a named context value (region, account id, ...).

    Context references never create dependency edges.
    """

    name: str

    def __str__(self) -> str:
        return f"context.{self.name}"


class _Unknown:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __str__(self) -> str:
        return "(known after apply)"

    def __reduce__(self) -> str:
        return "UNKNOWN"


UNKNOWN: Any = _Unknown()
"""Placeholder for a value that is only known after apply."""


class ResolutionContext:
    """Materialized attributes and context values used by `resolve`.

    Resources registered as *partial* are still being planned: a reference
    to one of their attributes that is not yet known resolves to `UNKNOWN`
    instead of failing.

    Args:
        resources: Mapping of resource address to its attributes.
        context: Named context values for `ContextRef`.
    """

    def __init__(
        self,
        resources: Mapping[str, Mapping[str, Any]] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self._resources: dict[str, Mapping[str, Any]] = dict(resources or {})
        self._partial: set[str] = set()
        self.context: Mapping[str, Any] = dict(context or {})

    def __contains__(self, address: object) -> bool:
        return address in self._resources

    def attributes(self, address: str) -> Mapping[str, Any] | None:
        return self._resources.get(address)

    def is_partial(self, address: str) -> bool:
        return address in self._partial

    def set_resource(
        self, address: str, attributes: Mapping[str, Any], partial: bool = False
    ) -> None:
        """Register (or replace) the attributes of one resource in place."""
        self._resources[address] = attributes
        if partial:
            self._partial.add(address)
        else:
            self._partial.discard(address)

    def with_resource(
        self, address: str, attributes: Mapping[str, Any], partial: bool = False
    ) -> "ResolutionContext":
        """Return a copy of this context with one more resource registered."""
        copy = ResolutionContext(self._resources, self.context)
        copy._partial = set(self._partial)
        copy.set_resource(address, attributes, partial=partial)
        return copy


def validate_value(value: Any, path: str = "value") -> Any:
    """Check that a value belongs to the value model and normalize it.

    Tuples are converted to lists; every other accepted value is returned
    as an equal, freshly built structure.

    Args:
        value: The value to check.
        path: Location used in error messages.

    Returns:
        The normalized value.

    Raises:
        InvalidValueError: If the value (or a nested value) is not a
            literal, list, string-keyed dict, `Reference`, `ContextRef` or
            `UNKNOWN`, or is a non-finite float.
    """
    if value is None or value is UNKNOWN or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidValueError(path, f"non-finite number {value!r}")
        return value
    if isinstance(value, (Reference, ContextRef)):
        return value
    if isinstance(value, (list, tuple)):
        return [validate_value(item, f"{path}.{i}") for i, item in enumerate(value)]
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidValueError(path, f"map key {key!r} is not a string")
            result[key] = validate_value(item, f"{path}.{key}")
        return result
    raise InvalidValueError(path, f"unsupported value type {type(value).__name__}")


def find_references(value: Any) -> Iterator[Reference]:
    """Yield every `Reference` in a value tree, depth first.

    Maps are walked in insertion order, so the result is deterministic.
    """
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, list):
        for item in value:
            yield from find_references(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from find_references(item)


def resolve(value: Any, context: ResolutionContext) -> Any:
    """Substitute every reference in a value tree with a concrete value.

    Args:
        value: A value from the value model.
        context: Materialized resource attributes and context values.

    Returns:
        A new value tree with no `Reference` or `ContextRef` left. It may
        still contain `UNKNOWN` when partial resources were referenced.

    Raises:
        UnresolvedReferenceError: If a referenced resource, attribute, path
            element or context value is missing.
    """
    if isinstance(value, Reference):
        return _resolve_reference(value, context)
    if isinstance(value, ContextRef):
        if value.name not in context.context:
            raise UnresolvedReferenceError(value, "context value is not set")
        return context.context[value.name]
    if isinstance(value, list):
        return [resolve(item, context) for item in value]
    if isinstance(value, dict):
        return {key: resolve(item, context) for key, item in value.items()}
    return value


def _resolve_reference(ref: Reference, context: ResolutionContext) -> Any:
    attributes = context.attributes(ref.address)
    if attributes is None:
        raise UnresolvedReferenceError(ref, "resource has not been materialized")
    if ref.attribute not in attributes:
        if context.is_partial(ref.address):
            return UNKNOWN
        raise UnresolvedReferenceError(ref, f"no attribute {ref.attribute!r}")

    current = attributes[ref.attribute]
    for step in ref.path:
        if current is UNKNOWN:
            return UNKNOWN
        if isinstance(current, dict) and isinstance(step, str) and step in current:
            current = current[step]
        elif (
            isinstance(current, list)
            and isinstance(step, int)
            and 0 <= step < len(current)
        ):
            current = current[step]
        else:
            raise UnresolvedReferenceError(ref, f"no element {step!r}")
    return current


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality used for diffing.

    Maps compare regardless of key order, lists element by element.
    Booleans never equal numbers, ``1`` equals ``1.0`` and `UNKNOWN` equals
    nothing, not even itself.
    """
    if a is UNKNOWN or b is UNKNOWN:
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    if type(a) is not type(b):
        return False
    return bool(a == b)


def to_json_value(value: Any) -> Any:
    """Encode a value tree for JSON, marking symbolic values.

    References become ``{"$ref": "..."}``, context references
    ``{"$context": "..."}`` and `UNKNOWN` ``{"$unknown": true}``.
    """
    if isinstance(value, Reference):
        return {"$ref": str(value)}
    if isinstance(value, ContextRef):
        return {"$context": value.name}
    if value is UNKNOWN:
        return {"$unknown": True}
    if isinstance(value, list):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {key: to_json_value(item) for key, item in value.items()}
    return value


def from_json_value(value: Any) -> Any:
    """Decode a value produced by `to_json_value` (or written by hand)."""
    if isinstance(value, dict):
        if len(value) == 1:
            if "$ref" in value:
                return Reference.parse(value["$ref"])
            if "$context" in value:
                return ContextRef(value["$context"])
            if value.get("$unknown") is True:
                return UNKNOWN
        return {key: from_json_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_json_value(item) for item in value]
    return value


def format_value(value: Any) -> str:
    """Render a value on one line for human-readable plan output."""
    if value is UNKNOWN:
        return str(UNKNOWN)
    if isinstance(value, (Reference, ContextRef)):
        return f"${{{value}}}"
    if isinstance(value, list):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        items = (f"{json.dumps(k)}: {format_value(v)}" for k, v in value.items())
        return "{" + ", ".join(items) + "}"
    return json.dumps(value)
