"""Test doubles for the orchestration collaborators."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from rollout_forge.orchestration.models import (
    BuildResult,
    ClusterState,
    ReadinessCondition,
    ResourceKind,
    ResourceOutcome,
    ResourceSpec,
)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster:
    """In-memory control plane recording every call.

    ``status`` maps a selector to either a ClusterState, a callable returning
    one, or an exception to raise. Unknown selectors report zero pods.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.applied: dict[str, int] = {}
        self.reject: dict[str, str] = {}
        self.status: dict[str, ClusterState | Callable[[], ClusterState] | Exception] = {}
        self.restart_ok = True
        self.scale_ok = True

    def apply_resource(self, spec: ResourceSpec) -> ResourceOutcome:
        self.calls.append(("apply", spec.name))
        if spec.name in self.reject:
            return ResourceOutcome(spec.identity, success=False, message=self.reject[spec.name])
        first_time = spec.name not in self.applied
        self.applied[spec.name] = self.applied.get(spec.name, 0) + 1
        return ResourceOutcome(spec.identity, success=True, changed=first_time)

    def get_status(self, condition: ReadinessCondition) -> ClusterState:
        self.calls.append(("status", condition.selector))
        entry = self.status.get(condition.selector, ClusterState())
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry()
        return entry

    def restart_deployment(self, name: str, namespace: str) -> ResourceOutcome:
        self.calls.append(("restart", name))
        message = "" if self.restart_ok else "deployments.apps not found"
        return ResourceOutcome(f"deployment/{name}", success=self.restart_ok, message=message)

    def scale_deployment(self, name: str, namespace: str, replicas: int) -> ResourceOutcome:
        self.calls.append(("scale", f"{name}={replicas}"))
        return ResourceOutcome(f"deployment/{name}", success=self.scale_ok, changed=True)

    def called(self, kind: str) -> list[str]:
        return [name for call, name in self.calls if call == kind]


class FakeBuilder:
    def __init__(self, success: bool = True, output: str = "") -> None:
        self.success = success
        self.output = output
        self.builds: list[tuple[str, Path]] = []

    def build_image(self, tag: str, context: Path) -> BuildResult:
        self.builds.append((tag, context))
        return BuildResult(image=tag, success=self.success, output=self.output)


def ready(count: int = 1) -> ClusterState:
    return ClusterState(total=count, ready=count, phases={"Running": count})


def pending(count: int = 1) -> ClusterState:
    return ClusterState(total=count, ready=0, phases={"Pending": count})


def spec(
    name: str,
    kind: ResourceKind = ResourceKind.CONFIG_DATA,
    *,
    namespace: str = "gke-learning",
    depends_on: tuple[str, ...] = (),
    selector: str | None = None,
) -> ResourceSpec:
    return ResourceSpec(
        kind=kind,
        name=name,
        namespace=namespace,
        depends_on=depends_on,
        selector=selector,
    )


