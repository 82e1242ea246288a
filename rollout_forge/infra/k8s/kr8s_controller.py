"""Kr8s-based implementation of KubernetesController.

Uses the kr8s library for native async Kubernetes operations.
"""

from __future__ import annotations

import asyncio
import subprocess
from pathlib import Path
from typing import Any

import kr8s
from kr8s.asyncio.objects import Deployment, Namespace, Pod, Service

from .controller import (
    CommandResult,
    KubernetesController,
    PodInfo,
    ServiceInfo,
    pod_info_from_dict,
    service_info_from_dict,
)


class Kr8sController(KubernetesController):
    """Kubernetes controller using the kr8s library.

    The kr8s API client is not cached: clients are bound to the event loop
    they were created in, and run_sync() creates a fresh loop per call.
    """

    async def _get_api(self) -> Any:  # Returns kr8s._api.Api
        return await kr8s.asyncio.api()

    async def _run_kubectl(self, args: list[str]) -> CommandResult:
        """Fallback for operations kr8s has no direct equivalent for."""

        def _run() -> CommandResult:
            try:
                result = subprocess.run(
                    ["kubectl", *args], capture_output=True, text=True
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
        try:
            api = await self._get_api()
            return api.auth.active_context or "unknown"
        except Exception:
            return "unknown"

    # =========================================================================
    # Namespace / Resource Operations
    # =========================================================================

    async def namespace_exists(self, namespace: str) -> bool:
        """Check if a namespace exists."""
        try:
            api = await self._get_api()
            ns = await Namespace.get(namespace, api=api)
            return ns is not None
        except kr8s.NotFoundError:
            return False
        except Exception:
            return False

    async def apply_manifest(
        self,
        manifest_path: Path,
        *,
        namespace: str | None = None,
    ) -> CommandResult:
        """Apply a Kubernetes manifest file.

        Note: kr8s doesn't have a direct 'apply' equivalent, so we use
        kubectl subprocess for this operation.
        """
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
        """Trigger a rolling restart (kubectl, kr8s has no rollout restart)."""
        target = f"{resource_type}/{name}" if name else resource_type
        return await self._run_kubectl(["rollout", "restart", target, "-n", namespace])

    async def scale_deployment(
        self,
        name: str,
        namespace: str,
        replicas: int,
    ) -> CommandResult:
        """Scale a Deployment to a specific number of replicas."""
        try:
            api = await self._get_api()
            deployment = await Deployment.get(name, namespace=namespace, api=api)
            await deployment.scale(replicas)
            return CommandResult(
                success=True,
                stdout=f"deployment.apps/{name} scaled to {replicas}",
            )
        except kr8s.NotFoundError:
            return CommandResult(
                success=False,
                stderr=f'deployment "{name}" not found',
                returncode=1,
            )
        except Exception as e:
            return CommandResult(success=False, stderr=str(e), returncode=1)

    # =========================================================================
    # Pod / Service Operations
    # =========================================================================

    async def get_pods(
        self,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[PodInfo]:
        """Get pods in a namespace, optionally filtered by label selector."""
        try:
            api = await self._get_api()
            return [
                pod_info_from_dict(pod.raw)
                async for pod in Pod.list(
                    namespace=namespace, label_selector=label_selector or "", api=api
                )
            ]
        except Exception as e:
            raise RuntimeError(f"Failed to list pods in {namespace}: {e}") from e

    async def get_services(self, namespace: str) -> list[ServiceInfo]:
        """Get all services in a namespace."""
        try:
            api = await self._get_api()
            return [
                service_info_from_dict(svc.raw)
                async for svc in Service.list(namespace=namespace, api=api)
            ]
        except Exception:
            return []
