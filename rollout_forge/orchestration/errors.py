"""Error taxonomy for rollout orchestration.

Lower-level components (ApplyEngine, ReadinessGate, PortForwardManager)
build these errors and hand them back inside typed results. Only the
RolloutController decides whether a run fails, and only the CLI decides the
process exit code.
"""

from __future__ import annotations

from typing import Any


class RolloutError(Exception):
    """Base class for all rollout-forge errors.

    Attributes:
        message: Short, user-facing description of what failed
        details: Optional multi-line recovery hints or diagnostics
    """

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigError(RolloutError):
    """Raised when the rollout configuration cannot be loaded or validated."""


# =============================================================================
# Graph errors (caller bugs: fatal, never retried)
# =============================================================================


class InvalidGraphError(RolloutError):
    """Raised when the declared resources do not form a valid graph."""


class DuplicateResourceError(InvalidGraphError):
    """Raised when two resources share the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Resource '{name}' is declared more than once")


class MissingDependencyError(InvalidGraphError):
    """Raised when a resource depends on a name that was never declared."""

    def __init__(self, resource: str, dependency: str):
        self.resource = resource
        self.dependency = dependency
        super().__init__(
            f"Resource '{resource}' depends on undeclared resource '{dependency}'"
        )


class CyclicDependencyError(InvalidGraphError):
    """Raised when no topological order exists."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            "Dependency cycle detected",
            details=" -> ".join(cycle),
        )


# =============================================================================
# Phase errors
# =============================================================================


class ApplyError(RolloutError):
    """The cluster rejected a resource (apply, scale or restart)."""

    def __init__(self, resource: str, message: str, details: str | None = None):
        self.resource = resource
        super().__init__(f"{resource}: {message}", details=details)


class ReadinessTimeoutError(RolloutError, TimeoutError):
    """Readiness was not reached within the allotted budget.

    Carries the last observed state so the operator can see how far the
    resource got. Re-running the rollout is safe because apply is idempotent.
    """

    def __init__(
        self,
        selector: str,
        namespace: str,
        timeout: float,
        last_state: Any = None,
        *,
        reason: str = "timeout",
    ):
        self.selector = selector
        self.namespace = namespace
        self.timeout = timeout
        self.last_state = last_state
        self.reason = reason
        super().__init__(
            f"'{selector}' in namespace '{namespace}' not ready after "
            f"{timeout:g}s ({reason})",
            details=f"Last observed state: {last_state}" if last_state else None,
        )


class DeadlineExceededError(RolloutError):
    """The overall rollout deadline passed before the run finished."""


class BuildError(RolloutError):
    """The container image build failed."""

    def __init__(self, image: str, details: str | None = None):
        self.image = image
        super().__init__(f"Image build failed for {image}", details=details)


class ForwardError(RolloutError):
    """A single port-forward session failed.

    Logged and isolated: it never aborts sibling sessions or a rollout that
    already completed.
    """
