"""Abstract Kubernetes controller interface.

Defines the contract for Kubernetes operations that can be implemented
by different backends (kubectl subprocess, kr8s library, etc.).
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .utils import run_sync

# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CommandResult:
    """Result of a command execution."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


@dataclass
class PodInfo:
    """Information about a Kubernetes pod."""

    name: str
    status: str
    ready: bool = False
    restarts: int = 0
    creation_timestamp: str = ""
    ip: str = ""
    node: str = ""


@dataclass
class ServiceInfo:
    """Information about a Kubernetes Service."""

    name: str
    type: str
    cluster_ip: str
    external_ip: str = ""
    ports: str = ""


@dataclass
class AppliedObject:
    """One line of `kubectl apply` output."""

    ref: str
    action: str

    @property
    def changed(self) -> bool:
        return self.action != "unchanged"


_APPLY_LINE = re.compile(r"^(?P<ref>\S+/\S+)\s+(?P<action>[a-z ()-]+?)\s*$")


def parse_apply_output(stdout: str) -> list[AppliedObject]:
    """Parse `kubectl apply` output lines ("deployment.apps/x configured").

    Args:
        stdout: Raw kubectl apply output

    Returns:
        One AppliedObject per recognised line
    """
    objects = []
    for line in stdout.splitlines():
        match = _APPLY_LINE.match(line.strip())
        if match:
            objects.append(AppliedObject(match["ref"], match["action"]))
    return objects


def pod_info_from_dict(pod: dict[str, Any]) -> PodInfo:
    """Build PodInfo from a pod object as returned by the API server."""
    metadata = pod.get("metadata", {}) or {}
    spec = pod.get("spec", {}) or {}
    status = pod.get("status", {}) or {}

    phase = status.get("phase", "Unknown")
    pod_status = phase
    restarts = 0
    for cs in status.get("containerStatuses", []) or []:
        restarts += cs.get("restartCount", 0)
        state = cs.get("state", {}) or {}
        if "waiting" in state:
            reason = state["waiting"].get("reason", "")
            if reason:
                pod_status = reason
        elif "terminated" in state:
            reason = state["terminated"].get("reason", "")
            if reason == "Error":
                pod_status = "Error"

    ready = any(
        condition.get("type") == "Ready" and condition.get("status") == "True"
        for condition in status.get("conditions", []) or []
    )
    if metadata.get("deletionTimestamp"):
        pod_status = "Terminating"
        ready = False

    return PodInfo(
        name=metadata.get("name", ""),
        status=pod_status,
        ready=ready,
        restarts=restarts,
        creation_timestamp=metadata.get("creationTimestamp", ""),
        ip=status.get("podIP", ""),
        node=spec.get("nodeName", ""),
    )


def service_info_from_dict(svc: dict[str, Any]) -> ServiceInfo:
    """Build ServiceInfo from a Service object as returned by the API server."""
    metadata = svc.get("metadata", {}) or {}
    spec = svc.get("spec", {}) or {}
    status = svc.get("status", {}) or {}

    external_ip = ""
    lb_ingress = (status.get("loadBalancer", {}) or {}).get("ingress", []) or []
    if lb_ingress:
        external_ip = lb_ingress[0].get("ip", lb_ingress[0].get("hostname", ""))

    ports = []
    for port in spec.get("ports", []) or []:
        port_str = f"{port.get('port')}"
        if target := port.get("targetPort"):
            port_str += f":{target}"
        if proto := port.get("protocol"):
            port_str += f"/{proto}"
        ports.append(port_str)

    return ServiceInfo(
        name=metadata.get("name", ""),
        type=spec.get("type", ""),
        cluster_ip=spec.get("clusterIP", ""),
        external_ip=external_ip,
        ports=",".join(ports),
    )


# =============================================================================
# Abstract Controller
# =============================================================================


class KubernetesController(ABC):
    """Abstract base class for Kubernetes operations.

    All methods are async to support both sync (kubectl) and async (kr8s)
    implementations. Use `KubernetesControllerSync` (or `run_sync()`) to call
    from synchronous code.
    """

    # =========================================================================
    # Cluster Context
    # =========================================================================

    @abstractmethod
    async def get_current_context(self) -> str:
        """Get the current kubectl context name.

        Returns:
            Context name, or "unknown" if detection fails
        """
        ...

    async def is_minikube_context(self) -> bool:
        """Check if the current kubectl context is Minikube."""
        return "minikube" in (await self.get_current_context()).lower()

    # =========================================================================
    # Namespace / Resource Operations
    # =========================================================================

    @abstractmethod
    async def namespace_exists(self, namespace: str) -> bool:
        """Check if a namespace exists."""
        ...

    @abstractmethod
    async def apply_manifest(
        self,
        manifest_path: Path,
        *,
        namespace: str | None = None,
    ) -> CommandResult:
        """Apply a Kubernetes manifest file.

        Args:
            manifest_path: Path to the YAML manifest file (or directory)
            namespace: Namespace for namespaced objects without one

        Returns:
            CommandResult whose stdout lists each object and its action
        """
        ...

    # =========================================================================
    # Deployment Operations
    # =========================================================================

    @abstractmethod
    async def rollout_restart(
        self,
        resource_type: str,
        namespace: str,
        name: str | None = None,
    ) -> CommandResult:
        """Trigger a rolling restart of a deployment/daemonset/statefulset.

        Args:
            resource_type: Resource type ("deployment", "statefulset", ...)
            namespace: Kubernetes namespace
            name: Specific resource name, or None to restart all of that type

        Returns:
            CommandResult with restart status
        """
        ...

    @abstractmethod
    async def scale_deployment(
        self,
        name: str,
        namespace: str,
        replicas: int,
    ) -> CommandResult:
        """Scale a Deployment to a specific number of replicas."""
        ...

    # =========================================================================
    # Pod / Service Operations
    # =========================================================================

    @abstractmethod
    async def get_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[PodInfo]:
        """Get pods in a namespace, optionally filtered by label selector.

        Raises:
            RuntimeError: If the cluster could not be queried (an empty list
                means the query succeeded and nothing matched)
        """
        ...

    @abstractmethod
    async def get_services(self, namespace: str) -> list[ServiceInfo]:
        """Get all services in a namespace."""
        ...


# =============================================================================
# Sync Wrapper
# =============================================================================


class KubernetesControllerSync:
    """Blocking facade over an async KubernetesController.

    Example:
        controller = KubernetesControllerSync(KubectlController())
        pods = controller.get_pods("gke-learning", "app=express-app")
    """

    def __init__(self, controller: KubernetesController) -> None:
        self._controller = controller

    @property
    def controller(self) -> KubernetesController:
        return self._controller

    def get_current_context(self) -> str:
        return run_sync(self._controller.get_current_context())

    def is_minikube_context(self) -> bool:
        return run_sync(self._controller.is_minikube_context())

    def namespace_exists(self, namespace: str) -> bool:
        return run_sync(self._controller.namespace_exists(namespace))

    def apply_manifest(
        self, manifest_path: Path, *, namespace: str | None = None
    ) -> CommandResult:
        return run_sync(
            self._controller.apply_manifest(manifest_path, namespace=namespace)
        )

    def rollout_restart(
        self, resource_type: str, namespace: str, name: str | None = None
    ) -> CommandResult:
        return run_sync(self._controller.rollout_restart(resource_type, namespace, name))

    def scale_deployment(self, name: str, namespace: str, replicas: int) -> CommandResult:
        return run_sync(self._controller.scale_deployment(name, namespace, replicas))

    def get_pods(self, namespace: str, label_selector: str | None = None) -> list[PodInfo]:
        return run_sync(self._controller.get_pods(namespace, label_selector))

    def get_services(self, namespace: str) -> list[ServiceInfo]:
        return run_sync(self._controller.get_services(namespace))
