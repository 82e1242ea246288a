"""Data types shared by the orchestration components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

# =============================================================================
# Resources
# =============================================================================


class ResourceKind(str, Enum):
    """Kinds of deployable units a rollout knows how to order."""

    NAMESPACE = "Namespace"
    CONFIG_DATA = "ConfigData"
    SECRET_DATA = "SecretData"
    STATEFUL_SERVICE = "StatefulService"
    STATELESS_SERVICE = "StatelessService"
    INGRESS_RULE = "IngressRule"

    @property
    def is_workload(self) -> bool:
        """Whether resources of this kind run pods that can become ready."""
        return self in (ResourceKind.STATEFUL_SERVICE, ResourceKind.STATELESS_SERVICE)


@dataclass(frozen=True)
class ResourceSpec:
    """A declared deployable unit.

    Attributes:
        kind: Resource kind
        name: Unique name within the graph
        namespace: Namespace the resource lives in (the namespace's own name
            for Namespace resources)
        depends_on: Names of resources that must be applied first
        manifest: Path to the manifest applied for this resource
        selector: Label selector of the pods this resource runs (workloads)
    """

    kind: ResourceKind
    name: str
    namespace: str
    depends_on: tuple[str, ...] = ()
    manifest: Path | None = None
    selector: str | None = None

    @property
    def identity(self) -> str:
        """Human-readable identity used in logs and errors."""
        return f"{self.kind.value}/{self.name}"


# =============================================================================
# Readiness
# =============================================================================


class ExpectedState(str, Enum):
    """State a set of pods must reach for a condition to hold."""

    READY = "ready"
    RUNNING = "running"
    ABSENT = "absent"


@dataclass(frozen=True)
class ReadinessCondition:
    """A single wait point: which pods, what state, and how long to wait."""

    selector: str
    namespace: str
    expected: ExpectedState = ExpectedState.READY
    timeout: float = 120.0
    poll_interval: float = 2.0
    min_ready: int = 1


@dataclass
class ClusterState:
    """What one status poll observed for a selector."""

    total: int = 0
    ready: int = 0
    phases: dict[str, int] = field(default_factory=dict)
    message: str = ""

    def satisfies(self, condition: ReadinessCondition) -> bool:
        """Check whether this observation meets the condition."""
        if condition.expected is ExpectedState.ABSENT:
            return self.total == 0
        if self.total == 0:
            return False
        if condition.expected is ExpectedState.RUNNING:
            return self.phases.get("Running", 0) == self.total
        return self.ready == self.total and self.ready >= condition.min_ready

    def __str__(self) -> str:
        phases = ", ".join(f"{k}={v}" for k, v in sorted(self.phases.items()))
        text = f"{self.ready}/{self.total} ready"
        if phases:
            text += f" [{phases}]"
        if self.message:
            text += f" ({self.message})"
        return text


@dataclass(frozen=True)
class ReadinessProbe:
    """How the target exposes health: HTTP path/port and waiting budget."""

    path: str = "/health"
    port: int = 3000
    interval: float = 2.0
    timeout: float = 300.0


@dataclass(frozen=True)
class DeploymentTarget:
    """The stateless service being rolled out."""

    name: str
    image: str
    namespace: str
    selector: str
    replicas: int | None = None
    probe: ReadinessProbe = field(default_factory=ReadinessProbe)
    resource: str | None = None
    build_context: Path = Path(".")
    service: str | None = None
    service_port: int | None = None

    def readiness_condition(self) -> ReadinessCondition:
        """Build the condition gating the target after a restart."""
        return ReadinessCondition(
            selector=self.selector,
            namespace=self.namespace,
            expected=ExpectedState.READY,
            timeout=self.probe.timeout,
            poll_interval=self.probe.interval,
            min_ready=self.replicas or 1,
        )


# =============================================================================
# Collaborator results
# =============================================================================


@dataclass
class ResourceOutcome:
    """Result of one cluster mutation (apply, scale, restart)."""

    resource: str
    success: bool
    changed: bool = False
    message: str = ""


@dataclass
class ApplyResult:
    """Aggregate result of applying one tier."""

    outcomes: list[ResourceOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def changed(self) -> list[ResourceOutcome]:
        return [o for o in self.outcomes if o.success and o.changed]

    @property
    def failed(self) -> list[ResourceOutcome]:
        return [o for o in self.outcomes if not o.success]

    def merge(self, other: ApplyResult) -> ApplyResult:
        return ApplyResult(outcomes=[*self.outcomes, *other.outcomes])


@dataclass
class BuildResult:
    """Result of an image build."""

    image: str
    success: bool
    output: str = ""


@dataclass
class SmokeReport:
    """Outcome of the post-deploy smoke requests."""

    url: str
    attempted: int = 0
    succeeded: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.attempted > 0 and self.succeeded == self.attempted


# =============================================================================
# Rollout run
# =============================================================================


class RolloutPhase(str, Enum):
    """States of the rollout state machine."""

    IDLE = "Idle"
    GRAPH_BUILT = "GraphBuilt"
    APPLYING = "Applying"
    AWAITING_DEPENDENCIES = "AwaitingDependencies"
    BUILDING = "Building"
    RESTARTING = "Restarting"
    AWAITING_TARGET = "AwaitingTarget"
    SMOKE_TESTING = "SmokeTesting"
    DONE = "Done"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RolloutPhase.DONE, RolloutPhase.FAILED)


class PhaseOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ExitCode(IntEnum):
    """Process exit codes reported by the CLI."""

    SUCCESS = 0
    ERROR = 1
    INVALID_GRAPH = 2
    APPLY_FAILED = 3
    DEPENDENCY_TIMEOUT = 4
    BUILD_FAILED = 5
    TARGET_TIMEOUT = 6
    DEADLINE_EXCEEDED = 7
    CANCELLED = 130


@dataclass
class PhaseRecord:
    """Outcome of one phase (or one tier of a phase)."""

    name: RolloutPhase
    outcome: PhaseOutcome
    duration_ms: int
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name.value,
            "outcome": self.outcome.value,
            "durationMs": self.duration_ms,
        }
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class FailureInfo:
    """Where and why a run failed."""

    phase: RolloutPhase
    cause: str
    exit_code: ExitCode
    resource: str | None = None
    last_state: str | None = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "cause": self.cause,
            "resource": self.resource,
            "lastState": self.last_state,
        }


@dataclass
class RolloutRun:
    """Ephemeral record of one rollout invocation."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    phase: RolloutPhase = RolloutPhase.IDLE
    records: list[PhaseRecord] = field(default_factory=list)
    log: list[str] = field(default_factory=list)
    failure: FailureInfo | None = None
    apply_result: ApplyResult = field(default_factory=ApplyResult)
    smoke_report: SmokeReport | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase is RolloutPhase.DONE

    @property
    def exit_code(self) -> ExitCode:
        if self.failure is not None:
            return self.failure.exit_code
        return ExitCode.SUCCESS if self.succeeded else ExitCode.ERROR

    def visited(self, phase: RolloutPhase) -> bool:
        """Whether the run ever recorded the given phase."""
        return any(record.name is phase for record in self.records)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the audit-log shape."""
        data: dict[str, Any] = {
            "startedAt": self.started_at.isoformat(),
            "phases": [record.to_dict() for record in self.records],
            "finalState": self.phase.value,
        }
        if self.failure is not None:
            data["failure"] = self.failure.to_dict()
        return data
