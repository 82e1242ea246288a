"""Narrow interfaces the orchestration core consumes.

Concrete implementations live outside this package:
- ClusterControlPlane: rollout_forge.infra.k8s.cluster.KubernetesCluster
- ImageBuilder: rollout_forge.cli.deployment.image_builder.DockerImageBuilder
- LocalCluster: rollout_forge.cli.deployment.shell_commands.minikube.MinikubeCommands
- SmokeChecker: rollout_forge.orchestration.smoke.SmokeTester

Forwarding sessions are not a rollout collaborator; they are owned by
rollout_forge.infra.k8s.port_forward.PortForwardManager.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .models import (
    BuildResult,
    ClusterState,
    DeploymentTarget,
    ReadinessCondition,
    ResourceOutcome,
    ResourceSpec,
    SmokeReport,
)


class ClusterControlPlane(Protocol):
    """Apply/status/restart/scale primitives of a running cluster."""

    def apply_resource(self, spec: ResourceSpec) -> ResourceOutcome: ...

    def get_status(self, condition: ReadinessCondition) -> ClusterState: ...

    def restart_deployment(self, name: str, namespace: str) -> ResourceOutcome: ...

    def scale_deployment(
        self, name: str, namespace: str, replicas: int
    ) -> ResourceOutcome: ...


class ImageBuilder(Protocol):
    """Container build system."""

    def build_image(self, tag: str, context: Path) -> BuildResult: ...


class LocalCluster(Protocol):
    """Lifecycle of a local development cluster."""

    def ensure_running(self, addons: Sequence[str] = ()) -> bool: ...

    def enable_addon(self, name: str) -> bool: ...


class SmokeChecker(Protocol):
    """Non-gating post-deploy checks."""

    def run(self, target: DeploymentTarget) -> SmokeReport: ...
