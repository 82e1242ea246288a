"""Deployment constants and defaults.

This module centralizes the magic strings, timeouts and file names used
throughout the rollout process.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DeploymentConstants:
    """Constants for rollouts onto a (local) Kubernetes cluster.

    All attributes are immutable.
    """

    # Kubernetes identifiers
    DEFAULT_NAMESPACE: str = "gke-learning"
    DEFAULT_DEPLOYMENT: str = "express-app"
    DEFAULT_SELECTOR: str = "app=express-app"
    DEFAULT_SERVICE: str = "express-app-service"
    DEFAULT_IMAGE: str = "asasikumar/gke-express-hello-world:latest"

    # Ingress controller installed by the minikube "ingress" addon
    INGRESS_NAMESPACE: str = "ingress-nginx"
    INGRESS_SELECTOR: str = "app.kubernetes.io/component=controller"
    INGRESS_HOST: str = "express-app.local"

    # Timeouts (seconds)
    INFRA_READY_TIMEOUT: float = 120.0
    APP_READY_TIMEOUT: float = 300.0
    POLL_INTERVAL: float = 2.0
    FORWARD_STARTUP_WAIT: float = 2.0
    FORWARD_STOP_TIMEOUT: float = 5.0

    # Smoke check
    SMOKE_REQUESTS: int = 5
    SMOKE_INTERVAL: float = 1.0

    # Default local port for temporary forwards (smoke checks)
    DEFAULT_EPHEMERAL_PORT: int = 54320

    # Files
    CONFIG_FILE: str = "rollout.yaml"
    STATE_DIR: str = ".rollout-forge"
    AUDIT_LOG_FILE: str = "rollouts.jsonl"
    FORWARDS_STATE_FILE: str = "forwards.json"
    HOSTS_FILE: str = "/etc/hosts"


DEFAULT_CONSTANTS = DeploymentConstants()
