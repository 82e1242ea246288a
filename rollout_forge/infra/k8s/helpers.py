from __future__ import annotations

from cachetools.func import lru_cache  # type: ignore

from rollout_forge.infra.k8s.controller import (
    KubernetesController,
    KubernetesControllerSync,
)

BACKENDS = ("kubectl", "kr8s")


@lru_cache(maxsize=4)
def get_k8s_controller(backend: str = "kubectl") -> KubernetesController:
    """Get the KubernetesController for a backend name.

    Args:
        backend: "kubectl" (subprocess) or "kr8s" (native async client)

    Returns:
        A shared controller instance for that backend

    Raises:
        ValueError: If the backend name is unknown
    """
    if backend == "kubectl":
        from rollout_forge.infra.k8s.kubectl_controller import KubectlController

        return KubectlController()
    if backend == "kr8s":
        from rollout_forge.infra.k8s.kr8s_controller import Kr8sController

        return Kr8sController()
    raise ValueError(f"Unknown Kubernetes backend {backend!r}; expected one of {BACKENDS}")


@lru_cache(maxsize=4)
def get_k8s_controller_sync(backend: str = "kubectl") -> KubernetesControllerSync:
    """Get a synchronous wrapper around get_k8s_controller(backend)."""
    return KubernetesControllerSync(get_k8s_controller(backend))
