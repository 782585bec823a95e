"""Shared fixtures for graph_plan tests."""

import pytest

from graph_plan import (
    EngineConfig,
    Executor,
    InMemoryProvider,
    MemoryStateStore,
    Planner,
    Reference,
    Resource,
    ResourceSet,
)


@pytest.fixture
def config() -> EngineConfig:
    """Fast retries and a small worker pool."""
    return EngineConfig(
        max_workers=4,
        max_attempts=3,
        base_delay=0.0,
        max_delay=0.0,
        context={"region": "eu-west-1"},
    )


@pytest.fixture
def provider() -> InMemoryProvider:
    return InMemoryProvider()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def planner(config: EngineConfig) -> Planner:
    return Planner(config)


@pytest.fixture
def executor(
    provider: InMemoryProvider, store: MemoryStateStore, config: EngineConfig
) -> Executor:
    return Executor(provider, store, config)


@pytest.fixture
def network() -> ResourceSet:
    """A VPC with two subnets and a security group."""
    return ResourceSet(
        [
            Resource("aws_vpc", "main", {"cidr_block": "10.0.0.0/16"}),
            Resource(
                "aws_subnet",
                "public",
                {"vpc_id": Reference("aws_vpc.main", "id"), "cidr_block": "10.0.1.0/24"},
            ),
            Resource(
                "aws_subnet",
                "private",
                {"vpc_id": Reference("aws_vpc.main", "id"), "cidr_block": "10.0.2.0/24"},
            ),
            Resource(
                "aws_security_group",
                "web",
                {"vpc_id": Reference("aws_vpc.main", "id"), "ingress": [443]},
            ),
        ]
    )
