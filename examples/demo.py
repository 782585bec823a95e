#!/usr/bin/env python3
"""Demo: A Firewalled VPC, Planned and Applied

This example walks a small AWS-style network through its lifecycle with
graph-plan: first creation, an in-place update, a forced replacement,
shrinking the configuration and finally destroying everything.

Nothing talks to a real cloud; the in-memory provider stands in for it.

Run with: python examples/demo.py
"""

from graph_plan import (
    ContextRef,
    EngineConfig,
    Executor,
    InMemoryProvider,
    MemoryStateStore,
    Planner,
    Reference,
    Resource,
    ResourceSchema,
    ResourceSet,
    SchemaRegistry,
    build_graph,
)


# =============================================================================
# PART 1: Declare the Resources
# =============================================================================
#
# Resources reference each other's attributes with Reference. The graph is
# discovered from those references; depends_on adds ordering without one.


def network(cidr: str = "10.0.0.0/16", with_firewall: bool = True) -> ResourceSet:
    """A VPC with a public and a firewall subnet, a gateway and a firewall."""
    vpc_id = Reference("aws_vpc.main", "id")
    resources = [
        Resource("aws_vpc", "main", {"cidr_block": cidr, "region": ContextRef("region")}),
        Resource("aws_internet_gateway", "igw", {"vpc_id": vpc_id}),
        Resource(
            "aws_subnet",
            "public",
            {"vpc_id": vpc_id, "cidr_block": "10.0.1.0/24", "public": True},
        ),
        Resource(
            "aws_subnet",
            "firewall",
            {"vpc_id": vpc_id, "cidr_block": "10.0.2.0/24"},
        ),
        Resource(
            "aws_route_table",
            "public",
            {
                "vpc_id": vpc_id,
                "routes": [
                    {
                        "destination": "0.0.0.0/0",
                        "gateway_id": Reference("aws_internet_gateway.igw", "id"),
                    }
                ],
            },
        ),
    ]
    if with_firewall:
        resources.append(
            Resource(
                "aws_instance",
                "firewall",
                {
                    "subnet_id": Reference("aws_subnet.firewall", "id"),
                    "instance_type": "c5.large",
                },
                depends_on=("aws_route_table.public",),
            )
        )
    return ResourceSet(resources)


SCHEMAS = SchemaRegistry(
    [
        ResourceSchema("aws_vpc", immutable=frozenset({"cidr_block"})),
        ResourceSchema(
            "aws_subnet",
            defaults={"public": False},
            immutable=frozenset({"cidr_block", "vpc_id"}),
        ),
        ResourceSchema(
            "aws_instance",
            immutable=frozenset({"subnet_id"}),
            create_before_destroy=True,
        ),
    ]
)


# =============================================================================
# PART 2: The Dependency Graph
# =============================================================================


def demo_graph() -> None:
    """Show the waves the resources are applied in."""
    print("=" * 70)
    print("DEPENDENCY GRAPH")
    print("=" * 70)

    graph = build_graph(network())
    for index, wave in enumerate(graph.waves()):
        print(f"\n   wave {index}:")
        for address in wave:
            deps = ", ".join(graph.direct_dependencies(address)) or "-"
            print(f"      {address:<30} needs {deps}")


# =============================================================================
# PART 3: Plan, Apply, Change, Repeat
# =============================================================================


def demo_lifecycle() -> None:
    """Apply a sequence of configurations against one state."""
    config = EngineConfig(
        max_workers=4, base_delay=0.0, max_delay=0.0, context={"region": "eu-west-1"}
    )
    store = MemoryStateStore()
    provider = InMemoryProvider()
    planner = Planner(config, SCHEMAS)
    executor = Executor(provider, store, config)

    steps = [
        ("Initial creation", network(), False),
        ("Nothing changed", network(), False),
        ("Forced replacement of the VPC", network(cidr="10.8.0.0/16"), False),
        ("Firewall removed", network(cidr="10.8.0.0/16", with_firewall=False), False),
        ("Destroy everything", network(cidr="10.8.0.0/16"), True),
    ]
    for title, resources, destroy in steps:
        print("\n" + "=" * 70)
        print(title.upper())
        print("=" * 70 + "\n")
        plan = planner.plan(resources, store.load(), destroy=destroy)
        print(plan.render())
        if plan.has_changes:
            report = executor.apply(plan)
            print()
            print(report.render())

    print(f"\n   objects left in the provider: {len(provider.objects)}")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    demo_graph()
    demo_lifecycle()
