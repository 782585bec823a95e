"""
Declarative resources, resource sets and per-type schemas.

A `Resource` is the unit the engine plans and applies. Its attributes are
value trees (see `graph_plan._values`) that may reference attributes of
other resources; those references are what the graph builder turns into
dependency edges.

Example:
    Declaring a small network topology::

        from graph_plan import Reference, Resource, ResourceSet

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
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from graph_plan._errors import DuplicateResourceError, InvalidValueError
from graph_plan._values import from_json_value, validate_value

__all__ = [
    "Resource",
    "ResourceSet",
    "ResourceSchema",
    "SchemaRegistry",
]


@dataclass(frozen=True)
class Resource:
    """A named, typed declarative entity.

    Attributes:
        type: Resource type, e.g. ``"aws_subnet"``.
        name: Name unique within the type, e.g. ``"public"``.
        attributes: Desired attribute values; may contain references.
        depends_on: Addresses of extra dependencies that are not expressed
            through attribute references.
        create_before_destroy: Replacement ordering override. None uses the
            type's schema default.
        ignore_changes: Attribute names excluded from diffing.
    """

    type: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    create_before_destroy: bool | None = None
    ignore_changes: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Resource":
        """Build a resource from a JSON-compatible mapping.

        Expected keys are ``type``, ``name`` and optionally ``attributes``,
        ``depends_on``, ``create_before_destroy`` and ``ignore_changes``.
        References inside attributes use ``{"$ref": "type.name.attr"}``.
        """
        return cls(
            type=data["type"],
            name=data["name"],
            attributes=from_json_value(data.get("attributes", {})),
            depends_on=tuple(data.get("depends_on", ())),
            create_before_destroy=data.get("create_before_destroy"),
            ignore_changes=tuple(data.get("ignore_changes", ())),
        )


class ResourceSet:
    """An ordered collection of resources keyed by address.

    Insertion order is the declaration order used to break ties wherever
    the engine orders resources. Attribute values are validated when the
    set is built, so nothing invalid reaches the graph builder.

    Args:
        resources: Resources in declaration order.

    Raises:
        DuplicateResourceError: If two resources share an address.
        InvalidValueError: If an attribute value is outside the value model.
    """

    def __init__(self, resources: Iterable[Resource] = ()) -> None:
        self._resources: dict[str, Resource] = {}
        for resource in resources:
            self._add(resource)

    def _add(self, resource: Resource) -> None:
        address = resource.address
        if address in self._resources:
            raise DuplicateResourceError(address)
        if not isinstance(resource.attributes, Mapping):
            raise InvalidValueError(address, "attributes must be a mapping")
        attributes = validate_value(resource.attributes, address)
        for dep in resource.depends_on:
            if not isinstance(dep, str):
                raise InvalidValueError(
                    f"{address}.depends_on", f"{dep!r} is not an address"
                )
        self._resources[address] = replace(resource, attributes=attributes)

    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> "ResourceSet":
        """Build a set from ``{"resources": [<resource mapping>, ...]}``."""
        return cls(Resource.from_dict(item) for item in document.get("resources", []))

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, address: object) -> bool:
        return address in self._resources

    def __getitem__(self, address: str) -> Resource:
        return self._resources[address]

    def get(self, address: str) -> Resource | None:
        return self._resources.get(address)

    @property
    def addresses(self) -> list[str]:
        return list(self._resources)

    def index(self, address: str) -> int:
        """Return the declaration index of an address."""
        return self.addresses.index(address)

    def subset(self, addresses: Iterable[str]) -> "ResourceSet":
        """Return a new set with only the given addresses, in declaration order."""
        wanted = set(addresses)
        return ResourceSet(r for r in self if r.address in wanted)


@dataclass(frozen=True)
class ResourceSchema:
    """Static knowledge about one resource type.

    Attributes:
        type: The resource type this schema describes.
        defaults: Values filled into desired attributes that are not set.
        immutable: Attribute names whose change forces replacement.
        create_before_destroy: Whether replacements create the new object
            before deleting the old one.
    """

    type: str
    defaults: Mapping[str, Any] = field(default_factory=dict)
    immutable: frozenset[str] = frozenset()
    create_before_destroy: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceSchema":
        return cls(
            type=data["type"],
            defaults=from_json_value(data.get("defaults", {})),
            immutable=frozenset(data.get("immutable", ())),
            create_before_destroy=bool(data.get("create_before_destroy", False)),
        )

    def fill_defaults(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        filled = dict(attributes)
        for key, value in self.defaults.items():
            filled.setdefault(key, value)
        return filled


class SchemaRegistry:
    """Lookup of `ResourceSchema` by resource type.

    Types without a registered schema get an empty one: no defaults, every
    attribute mutable, destroy-then-create replacement.
    """

    def __init__(self, schemas: Iterable[ResourceSchema] = ()) -> None:
        self._schemas: dict[str, ResourceSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: ResourceSchema) -> None:
        self._schemas[schema.type] = schema

    def get(self, resource_type: str) -> ResourceSchema:
        schema = self._schemas.get(resource_type)
        if schema is None:
            return ResourceSchema(resource_type)
        return schema

    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> "SchemaRegistry":
        """Build a registry from ``{"schemas": [<schema mapping>, ...]}``."""
        schemas = document.get("schemas", [])
        return cls(ResourceSchema.from_dict(item) for item in schemas)

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._schemas
