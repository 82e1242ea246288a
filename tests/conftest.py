"""Shared fixtures for the test suite."""

from __future__ import annotations

import pytest
from loguru import logger

from rollout_forge.orchestration.models import (
    DeploymentTarget,
    ReadinessProbe,
    ResourceKind,
    ResourceSpec,
)
from tests.helpers import FakeBuilder, FakeClock, FakeCluster, spec


@pytest.fixture(autouse=True)
def _silence_loguru():
    """Keep loguru output out of test runs."""
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def specs() -> list[ResourceSpec]:
    """Namespace, config, database and app, declared out of order."""
    return [
        spec(
            "express-app",
            ResourceKind.STATELESS_SERVICE,
            depends_on=("mongodb", "app-config"),
            selector="app=express-app",
        ),
        spec("mongodb", ResourceKind.STATEFUL_SERVICE, selector="app=mongodb"),
        spec("app-config", ResourceKind.CONFIG_DATA),
        spec("gke-learning", ResourceKind.NAMESPACE, namespace="gke-learning"),
    ]


@pytest.fixture
def target() -> DeploymentTarget:
    return DeploymentTarget(
        name="express-app",
        image="express-app:dev",
        namespace="gke-learning",
        selector="app=express-app",
        probe=ReadinessProbe(interval=2.0, timeout=30.0),
        resource="express-app",
    )
