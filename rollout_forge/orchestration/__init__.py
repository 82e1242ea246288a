"""Deployment orchestration core.

Leaf-first components:
- ResourceGraph: declared resources and dependency tiers
- ApplyEngine: tier-by-tier idempotent apply
- ReadinessGate: cancellable readiness polling
- RolloutController: the rollout state machine

Example:
    from rollout_forge.orchestration import RolloutController, RolloutOptions

    controller = RolloutController(cluster, builder, options=RolloutOptions())
    run = controller.run(specs, target)
    if not run.succeeded:
        print(run.failure)
"""

from .apply import ApplyEngine
from .audit import RolloutLog
from .errors import (
    ApplyError,
    BuildError,
    ConfigError,
    CyclicDependencyError,
    DeadlineExceededError,
    DuplicateResourceError,
    ForwardError,
    InvalidGraphError,
    MissingDependencyError,
    ReadinessTimeoutError,
    RolloutError,
)
from .graph import ResourceGraph
from .models import (
    ApplyResult,
    BuildResult,
    ClusterState,
    DeploymentTarget,
    ExitCode,
    ExpectedState,
    PhaseOutcome,
    ReadinessCondition,
    ReadinessProbe,
    ResourceKind,
    ResourceOutcome,
    ResourceSpec,
    RolloutPhase,
    RolloutRun,
    SmokeReport,
)
from .readiness import ReadinessGate, ReadinessResult
from .rollout import RolloutController, RolloutOptions
from .smoke import SmokeTester, fixed_url

__all__ = [
    # Components
    "ResourceGraph",
    "ApplyEngine",
    "ReadinessGate",
    "RolloutController",
    "RolloutOptions",
    "RolloutLog",
    "SmokeTester",
    "fixed_url",
    # Data classes
    "ApplyResult",
    "BuildResult",
    "ClusterState",
    "DeploymentTarget",
    "ExitCode",
    "ExpectedState",
    "PhaseOutcome",
    "ReadinessCondition",
    "ReadinessProbe",
    "ReadinessResult",
    "ResourceKind",
    "ResourceOutcome",
    "ResourceSpec",
    "RolloutPhase",
    "RolloutRun",
    "SmokeReport",
    # Errors
    "RolloutError",
    "ConfigError",
    "InvalidGraphError",
    "DuplicateResourceError",
    "CyclicDependencyError",
    "MissingDependencyError",
    "ApplyError",
    "ReadinessTimeoutError",
    "DeadlineExceededError",
    "BuildError",
    "ForwardError",
]
