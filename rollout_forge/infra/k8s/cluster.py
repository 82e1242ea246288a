"""Cluster control plane backed by a KubernetesController.

Adapts the async, kubectl-shaped controller API to the synchronous
apply/status/restart/scale primitives the rollout engine consumes.
"""

from __future__ import annotations

from collections import Counter

from loguru import logger

from rollout_forge.orchestration.models import (
    ClusterState,
    ReadinessCondition,
    ResourceKind,
    ResourceOutcome,
    ResourceSpec,
)

from .controller import CommandResult, KubernetesController, parse_apply_output
from .utils import run_sync


class KubernetesCluster:
    """ClusterControlPlane implementation over any KubernetesController."""

    def __init__(self, controller: KubernetesController) -> None:
        self.controller = controller

    def apply_resource(self, spec: ResourceSpec) -> ResourceOutcome:
        """Apply the manifest of one resource.

        The outcome is ``changed`` unless kubectl reported every object in
        the manifest as unchanged.
        """
        if spec.manifest is None:
            return ResourceOutcome(
                resource=spec.identity,
                success=False,
                message="no manifest configured",
            )
        if not spec.manifest.exists():
            return ResourceOutcome(
                resource=spec.identity,
                success=False,
                message=f"manifest not found: {spec.manifest}",
            )

        namespace = None if spec.kind is ResourceKind.NAMESPACE else spec.namespace
        result = run_sync(self.controller.apply_manifest(spec.manifest, namespace=namespace))
        if not result.success:
            return ResourceOutcome(
                resource=spec.identity,
                success=False,
                message=_error_text(result),
            )

        objects = parse_apply_output(result.stdout)
        changed = not objects or any(obj.changed for obj in objects)
        logger.debug("Applied {}: {}", spec.identity, result.stdout.strip())
        return ResourceOutcome(
            resource=spec.identity,
            success=True,
            changed=changed,
            message=result.stdout.strip(),
        )

    def get_status(self, condition: ReadinessCondition) -> ClusterState:
        """Observe the pods matching a condition's selector.

        Raises:
            RuntimeError: If the cluster could not be queried
        """
        pods = run_sync(self.controller.get_pods(condition.namespace, condition.selector))
        return ClusterState(
            total=len(pods),
            ready=sum(1 for pod in pods if pod.ready),
            phases=dict(Counter(pod.status for pod in pods)),
        )

    def restart_deployment(self, name: str, namespace: str) -> ResourceOutcome:
        result = run_sync(self.controller.rollout_restart("deployment", namespace, name))
        return ResourceOutcome(
            resource=f"deployment/{name}",
            success=result.success,
            changed=result.success,
            message=result.stdout.strip() if result.success else _error_text(result),
        )

    def scale_deployment(self, name: str, namespace: str, replicas: int) -> ResourceOutcome:
        result = run_sync(self.controller.scale_deployment(name, namespace, replicas))
        return ResourceOutcome(
            resource=f"deployment/{name}",
            success=result.success,
            changed=result.success,
            message=result.stdout.strip() if result.success else _error_text(result),
        )


def _error_text(result: CommandResult) -> str:
    return result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
