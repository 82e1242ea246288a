"""Pydantic models for ``rollout.yaml``.

The file has a single top-level ``rollout:`` key::

    rollout:
      namespace: gke-learning
      cluster:
        provider: minikube
        addons: [ingress]
      resources:
        - name: gke-learning
          kind: Namespace
          manifest: k8s/namespace.yaml
        - name: app-config
          kind: ConfigData
          manifest: k8s/configmap.yaml
        - name: express-app
          kind: StatelessService
          manifest: k8s/deployment.yaml
          depends_on: [app-config]
          selector: app=express-app
      target:
        deployment: express-app
        image: asasikumar/gke-express-hello-world:latest
        resource: express-app

Relative paths are resolved against the directory holding the file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from rollout_forge.infra.constants import DEFAULT_CONSTANTS
from rollout_forge.infra.k8s.port_forward import ForwardSession
from rollout_forge.orchestration.models import (
    DeploymentTarget,
    ReadinessProbe,
    ResourceKind,
    ResourceSpec,
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Cluster
# =============================================================================


class ClusterConfig(_Section):
    """Where rollouts go and how the cluster is driven."""

    provider: Literal["minikube", "external"] = "minikube"
    backend: Literal["kubectl", "kr8s"] = "kubectl"
    addons: list[str] = Field(default_factory=lambda: ["ingress"])
    wait_for_ingress: bool = Field(
        default=True,
        description="Wait for the ingress controller during `setup`",
    )
    ingress_namespace: str = DEFAULT_CONSTANTS.INGRESS_NAMESPACE
    ingress_selector: str = DEFAULT_CONSTANTS.INGRESS_SELECTOR
    use_docker_env: bool = Field(
        default=True,
        description="Build inside Minikube's Docker daemon (minikube docker-env)",
    )

    @property
    def is_minikube(self) -> bool:
        return self.provider == "minikube"


# =============================================================================
# Resources and target
# =============================================================================


class ResourceConfig(_Section):
    """One node of the dependency graph."""

    name: str = Field(min_length=1)
    kind: ResourceKind
    manifest: Path | None = None
    namespace: str | None = None
    depends_on: list[str] = Field(default_factory=list)
    selector: str | None = Field(
        default=None,
        description="Pod label selector; workloads with one are readiness-gated",
    )


class ProbeConfig(_Section):
    path: str = "/health"
    port: int = Field(default=3000, gt=0, lt=65536)


class TargetConfig(_Section):
    """The application deployment that gets rebuilt and restarted."""

    deployment: str = DEFAULT_CONSTANTS.DEFAULT_DEPLOYMENT
    image: str = DEFAULT_CONSTANTS.DEFAULT_IMAGE
    selector: str = DEFAULT_CONSTANTS.DEFAULT_SELECTOR
    namespace: str | None = None
    replicas: int | None = Field(default=None, ge=1)
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    service: str | None = DEFAULT_CONSTANTS.DEFAULT_SERVICE
    service_port: int = Field(default=80, gt=0, lt=65536)
    build_context: Path = Path(".")
    resource: str | None = Field(
        default=None,
        description="Graph resource that declares this deployment",
    )


class TimeoutsConfig(_Section):
    dependency: float = Field(default=DEFAULT_CONSTANTS.INFRA_READY_TIMEOUT, gt=0)
    target: float = Field(default=DEFAULT_CONSTANTS.APP_READY_TIMEOUT, gt=0)
    poll_interval: float = Field(default=DEFAULT_CONSTANTS.POLL_INTERVAL, gt=0)
    deadline: float | None = Field(default=None, gt=0)


class SmokeConfig(_Section):
    enabled: bool = True
    requests: int = Field(default=DEFAULT_CONSTANTS.SMOKE_REQUESTS, ge=1)
    interval: float = Field(default=DEFAULT_CONSTANTS.SMOKE_INTERVAL, ge=0)
    timeout: float = Field(default=5.0, gt=0)
    url: str | None = Field(
        default=None,
        description="Base URL to hit; when unset a temporary port-forward is used",
    )
    local_port: int = Field(default=DEFAULT_CONSTANTS.DEFAULT_EPHEMERAL_PORT, gt=0, lt=65536)


class ForwardConfig(_Section):
    service: str
    local_port: int = Field(gt=0, lt=65536)
    remote_port: int = Field(gt=0, lt=65536)
    namespace: str | None = None


class IngressConfig(_Section):
    host: str | None = DEFAULT_CONSTANTS.INGRESS_HOST


# =============================================================================
# Root
# =============================================================================


class RolloutConfig(_Section):
    """Root of ``rollout.yaml``."""

    namespace: str = DEFAULT_CONSTANTS.DEFAULT_NAMESPACE
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    resources: list[ResourceConfig] = Field(default_factory=list)
    target: TargetConfig = Field(default_factory=TargetConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    smoke: SmokeConfig = Field(default_factory=SmokeConfig)
    forwards: list[ForwardConfig] = Field(default_factory=list)
    ingress: IngressConfig = Field(default_factory=IngressConfig)
    audit_log: Path | None = Path(DEFAULT_CONSTANTS.STATE_DIR) / DEFAULT_CONSTANTS.AUDIT_LOG_FILE

    _base_dir: Path = PrivateAttr(default_factory=Path)

    @model_validator(mode="after")
    def _check_target_resource(self) -> RolloutConfig:
        if self.target.resource is not None:
            names = {resource.name for resource in self.resources}
            if self.target.resource not in names:
                raise ValueError(
                    f"target.resource '{self.target.resource}' is not a declared resource"
                )
        return self

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def with_base_dir(self, base_dir: Path) -> RolloutConfig:
        self._base_dir = base_dir
        return self

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self._base_dir / path

    # =========================================================================
    # Conversion to orchestration types
    # =========================================================================

    def resource_specs(self) -> list[ResourceSpec]:
        """Build the graph nodes, filling in namespaces and absolute paths."""
        specs = []
        for resource in self.resources:
            if resource.kind is ResourceKind.NAMESPACE:
                namespace = resource.name
            else:
                namespace = resource.namespace or self.namespace
            specs.append(
                ResourceSpec(
                    kind=resource.kind,
                    name=resource.name,
                    namespace=namespace,
                    depends_on=tuple(resource.depends_on),
                    manifest=self.resolve(resource.manifest) if resource.manifest else None,
                    selector=resource.selector,
                )
            )
        return specs

    def deployment_target(self) -> DeploymentTarget:
        target = self.target
        return DeploymentTarget(
            name=target.deployment,
            image=target.image,
            namespace=target.namespace or self.namespace,
            selector=target.selector,
            replicas=target.replicas,
            probe=ReadinessProbe(
                path=target.probe.path,
                port=target.probe.port,
                interval=self.timeouts.poll_interval,
                timeout=self.timeouts.target,
            ),
            resource=target.resource,
            build_context=self.resolve(target.build_context),
            service=target.service,
            service_port=target.service_port,
        )

    def forward_sessions(self) -> list[ForwardSession]:
        return [
            ForwardSession(
                service=forward.service,
                local_port=forward.local_port,
                remote_port=forward.remote_port,
                namespace=forward.namespace or self.namespace,
            )
            for forward in self.forwards
        ]

    def audit_log_path(self) -> Path | None:
        return self.resolve(self.audit_log) if self.audit_log else None
