"""Kubectl-based implementation of KubernetesController.

Uses subprocess calls to kubectl for all operations.
"""

from __future__ import annotations

import asyncio
import json
import subprocess
from pathlib import Path

from loguru import logger

from .controller import (
    CommandResult,
    KubernetesController,
    PodInfo,
    ServiceInfo,
    pod_info_from_dict,
    service_info_from_dict,
)


class KubectlController(KubernetesController):
    """Kubernetes controller using kubectl subprocess calls.

    All methods are async but internally use asyncio.to_thread()
    to run blocking subprocess calls without blocking the event loop.

    Args:
        kubectl: kubectl executable to invoke
        context: Optional kubeconfig context passed as ``--context``
    """

    def __init__(self, kubectl: str = "kubectl", context: str | None = None) -> None:
        self.kubectl = kubectl
        self.context = context

    async def _run_kubectl(
        self,
        args: list[str],
        *,
        input_data: str | None = None,
    ) -> CommandResult:
        """Run a kubectl command asynchronously.

        Args:
            args: Command arguments (without 'kubectl' prefix)
            input_data: Optional input to send to stdin

        Returns:
            CommandResult with execution results
        """
        cmd = [self.kubectl]
        if self.context:
            cmd.extend(["--context", self.context])
        cmd.extend(args)

        def _run() -> CommandResult:
            logger.debug("Running: {}", " ".join(cmd))
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    input=input_data,
                )
            except FileNotFoundError as e:
                return CommandResult(success=False, stderr=str(e), returncode=127)
            return CommandResult(
                success=result.returncode == 0,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                returncode=result.returncode,
            )

        return await asyncio.to_thread(_run)

    # =========================================================================
    # Cluster Context
    # =========================================================================

    async def get_current_context(self) -> str:
        """Get the current kubectl context name."""
        result = await self._run_kubectl(["config", "current-context"])
        return result.stdout.strip() if result.success else "unknown"

    # =========================================================================
    # Namespace / Resource Operations
    # =========================================================================

    async def namespace_exists(self, namespace: str) -> bool:
        """Check if a namespace exists."""
        result = await self._run_kubectl(["get", "namespace", namespace])
        return result.success

    async def apply_manifest(
        self,
        manifest_path: Path,
        *,
        namespace: str | None = None,
    ) -> CommandResult:
        """Apply a Kubernetes manifest file."""
        args = ["apply", "-f", str(manifest_path)]
        if namespace:
            args.extend(["-n", namespace])
        return await self._run_kubectl(args)

    # =========================================================================
    # Deployment Operations
    # =========================================================================

    async def rollout_restart(
        self,
        resource_type: str,
        namespace: str,
        name: str | None = None,
    ) -> CommandResult:
        """Trigger a rolling restart of a deployment/daemonset/statefulset."""
        target = f"{resource_type}/{name}" if name else resource_type
        return await self._run_kubectl(["rollout", "restart", target, "-n", namespace])

    async def scale_deployment(
        self,
        name: str,
        namespace: str,
        replicas: int,
    ) -> CommandResult:
        """Scale a Deployment to a specific number of replicas."""
        return await self._run_kubectl(
            [
                "scale",
                f"deployment/{name}",
                f"--replicas={replicas}",
                "-n",
                namespace,
            ]
        )

    # =========================================================================
    # Pod / Service Operations
    # =========================================================================

    async def get_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[PodInfo]:
        """Get pods in a namespace with their status.

        Args:
            namespace: Kubernetes namespace to search
            label_selector: Optional label selector (e.g., "app=express-app")

        Returns:
            List of PodInfo objects matching the criteria

        Raises:
            RuntimeError: If kubectl fails or returns unparseable output
        """
        args = ["get", "pods", "-n", namespace, "-o", "json"]
        if label_selector:
            args.extend(["-l", label_selector])

        result = await self._run_kubectl(args)
        if not result.success:
            raise RuntimeError(result.stderr.strip() or "kubectl get pods failed")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Unparseable kubectl output: {e}") from e
        return [pod_info_from_dict(pod) for pod in data.get("items", [])]

    async def get_services(self, namespace: str) -> list[ServiceInfo]:
        """Get all services in a namespace."""
        result = await self._run_kubectl(
            ["get", "services", "-n", namespace, "-o", "json"]
        )
        if not result.success or not result.stdout:
            return []

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return []
        return [service_info_from_dict(svc) for svc in data.get("items", [])]
