"""Kubernetes infrastructure abstraction layer.

This module provides a clean abstraction over Kubernetes operations,
supporting multiple backends (kubectl subprocess, kr8s library), plus the
cluster adapter used by the rollout engine and port-forward management.

Example:
    from rollout_forge.infra.k8s import KubectlController, KubernetesCluster

    cluster = KubernetesCluster(KubectlController())
    outcome = cluster.restart_deployment("express-app", "gke-learning")
"""

from .cluster import KubernetesCluster
from .controller import (
    CommandResult,
    KubernetesController,
    KubernetesControllerSync,
    PodInfo,
    ServiceInfo,
    parse_apply_output,
)
from .helpers import get_k8s_controller, get_k8s_controller_sync
from .kubectl_controller import KubectlController
from .port_forward import (
    ForwardHandle,
    ForwardSession,
    ForwardStatus,
    PortForwardManager,
    terminate_recorded,
)
from .utils import run_sync

__all__ = [
    # Controller classes
    "KubernetesController",
    "KubernetesControllerSync",
    "KubectlController",
    "KubernetesCluster",
    # Data classes
    "CommandResult",
    "PodInfo",
    "ServiceInfo",
    # Port forwarding
    "PortForwardManager",
    "ForwardSession",
    "ForwardHandle",
    "ForwardStatus",
    "terminate_recorded",
    # Utilities
    "get_k8s_controller",
    "get_k8s_controller_sync",
    "parse_apply_output",
    "run_sync",
]
