"""Rollout state machine.

Idle -> GraphBuilt -> Applying -> AwaitingDependencies -> Building ->
Restarting -> AwaitingTarget -> SmokeTesting -> Done, with Failed reachable
from every non-terminal state.

The image is built only after every dependency tier is applied and ready, so
an unreachable cluster or an unprovisionable dependency fails the run before
any build time is spent. No rollback is ever attempted: rolling back is an
operator decision, and re-running is always safe because apply is
idempotent.

Concurrent rollouts of the same target are not prevented here; callers
serialize invocations per target.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from loguru import logger

from .apply import ApplyEngine
from .audit import RolloutLog
from .collaborators import ClusterControlPlane, ImageBuilder, SmokeChecker
from .errors import InvalidGraphError, ReadinessTimeoutError
from .graph import ResourceGraph
from .models import (
    DeploymentTarget,
    ExitCode,
    ExpectedState,
    FailureInfo,
    PhaseOutcome,
    PhaseRecord,
    ReadinessCondition,
    ResourceSpec,
    RolloutPhase,
    RolloutRun,
)
from .readiness import ReadinessGate, ReadinessResult

PhaseListener = Callable[[RolloutPhase, str], None]


@dataclass(frozen=True)
class RolloutOptions:
    """Per-invocation policy for a rollout.

    Attributes:
        dependency_timeout: Readiness budget for dependency workloads
        poll_interval: Seconds between dependency status polls
        deadline: Optional budget in seconds for the whole run
        skip_build: Record Building as skipped instead of building
        skip_smoke: Record SmokeTesting as skipped
        image_tag: Image reference to build (defaults to the target's image)
    """

    dependency_timeout: float = 120.0
    poll_interval: float = 2.0
    deadline: float | None = None
    skip_build: bool = False
    skip_smoke: bool = False
    image_tag: str | None = None


class RolloutController:
    """Orchestrates one end-to-end rollout.

    Args:
        cluster: Cluster control plane
        builder: Container image builder
        options: Rollout policy
        gate: Readiness gate (built over ``cluster`` when omitted)
        apply_engine: Apply engine (built over ``cluster`` when omitted)
        smoke: Optional smoke checker
        audit_log: Optional sink receiving the final RolloutRun
        clock: Monotonic clock shared with the default gate
        on_phase: Callback invoked on every phase transition
    """

    def __init__(
        self,
        cluster: ClusterControlPlane,
        builder: ImageBuilder,
        *,
        options: RolloutOptions | None = None,
        gate: ReadinessGate | None = None,
        apply_engine: ApplyEngine | None = None,
        smoke: SmokeChecker | None = None,
        audit_log: RolloutLog | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_phase: PhaseListener | None = None,
    ) -> None:
        self.cluster = cluster
        self.builder = builder
        self.options = options or RolloutOptions()
        self.clock = clock
        self.gate = gate or ReadinessGate(cluster, clock=clock)
        self.apply_engine = apply_engine or ApplyEngine(cluster)
        self.smoke = smoke
        self.audit_log = audit_log
        self.on_phase = on_phase
        self._cancel = threading.Event()
        self._deadline: float | None = None

    def cancel(self) -> None:
        """Abort the running (or next) rollout at its next suspension point.

        The cancellation is consumed when that run ends, so the controller can
        run again afterwards.
        """
        self._cancel.set()
        self.gate.cancel()

    # =========================================================================
    # Public Interface
    # =========================================================================

    def run(
        self, specs: Iterable[ResourceSpec], target: DeploymentTarget
    ) -> RolloutRun:
        """Execute the rollout and return its record.

        Never raises for rollout failures; inspect ``run.failure`` and
        ``run.exit_code`` instead.
        """
        run = RolloutRun()
        started = self.clock()
        self._deadline = (
            started + self.options.deadline if self.options.deadline else None
        )
        self._log(run, f"Rollout of {target.name} ({target.image}) started")

        try:
            self._execute(run, specs, target)
        finally:
            self._cancel.clear()
            self.gate.reset()
            self._log(
                run,
                f"Rollout finished in state {run.phase.value} after "
                f"{self.clock() - started:.1f}s",
            )
            if self.audit_log is not None:
                self.audit_log.append(run)
        return run

    # =========================================================================
    # Phases
    # =========================================================================

    def _execute(
        self,
        run: RolloutRun,
        specs: Iterable[ResourceSpec],
        target: DeploymentTarget,
    ) -> None:
        # Idle -> GraphBuilt
        t0 = self.clock()
        try:
            tiers = ResourceGraph.from_specs(specs).topological_order()
        except InvalidGraphError as exc:
            self._record(run, RolloutPhase.GRAPH_BUILT, PhaseOutcome.FAILURE, t0)
            self._fail(
                run,
                RolloutPhase.GRAPH_BUILT,
                exc.message,
                ExitCode.INVALID_GRAPH,
                details=exc.details,
            )
            return
        self._enter(run, RolloutPhase.GRAPH_BUILT, f"{len(tiers)} tiers")
        self._record(
            run, RolloutPhase.GRAPH_BUILT, PhaseOutcome.SUCCESS, t0, f"{len(tiers)} tiers"
        )

        for index, tier in enumerate(tiers):
            if not self._apply_tier(run, index, tier, target):
                return

        if not self._build(run, target):
            return
        if not self._restart(run, target):
            return
        if not self._await_target(run, target):
            return

        self._smoke_test(run, target)
        self._enter(run, RolloutPhase.DONE)
        self._log(run, f"Rollout of {target.name} complete")

    def _apply_tier(
        self,
        run: RolloutRun,
        index: int,
        tier: list[ResourceSpec],
        target: DeploymentTarget,
    ) -> bool:
        if not self._check_budget(run, RolloutPhase.APPLYING):
            return False

        names = ", ".join(spec.name for spec in tier)
        detail = f"tier {index}: {names}"
        self._enter(run, RolloutPhase.APPLYING, detail)
        t0 = self.clock()
        result = self.apply_engine.apply(tier)
        run.apply_result = run.apply_result.merge(result)

        if not result.success:
            self._record(run, RolloutPhase.APPLYING, PhaseOutcome.FAILURE, t0, detail)
            first = result.failed[0]
            self._fail(
                run,
                RolloutPhase.APPLYING,
                f"Apply failed for {len(result.failed)} resource(s) in tier {index}",
                ExitCode.APPLY_FAILED,
                resource=first.resource,
                last_state=first.message,
                details="\n".join(
                    f"{o.resource}: {o.message}" for o in result.failed
                ),
            )
            return False
        self._record(run, RolloutPhase.APPLYING, PhaseOutcome.SUCCESS, t0, detail)

        gated = [
            spec
            for spec in tier
            if spec.kind.is_workload
            and spec.selector
            and spec.name != target.resource
        ]
        if not gated:
            return True

        self._enter(run, RolloutPhase.AWAITING_DEPENDENCIES, detail)
        for spec in gated:
            t0 = self.clock()
            condition = ReadinessCondition(
                selector=spec.selector or "",
                namespace=spec.namespace,
                expected=ExpectedState.READY,
                timeout=self.options.dependency_timeout,
                poll_interval=self.options.poll_interval,
            )
            waited = self.gate.wait_until_ready(
                condition, cancel=self._cancel, deadline=self._deadline
            )
            if not self._gate_passed(
                run,
                RolloutPhase.AWAITING_DEPENDENCIES,
                waited,
                t0,
                spec.identity,
                ExitCode.DEPENDENCY_TIMEOUT,
            ):
                return False
        return True

    def _build(self, run: RolloutRun, target: DeploymentTarget) -> bool:
        if not self._check_budget(run, RolloutPhase.BUILDING):
            return False
        tag = self.options.image_tag or target.image
        self._enter(run, RolloutPhase.BUILDING, tag)
        t0 = self.clock()

        if self.options.skip_build:
            self._record(run, RolloutPhase.BUILDING, PhaseOutcome.SKIPPED, t0, tag)
            self._log(run, "Image build skipped")
            return True

        try:
            result = self.builder.build_image(tag, target.build_context)
        except Exception as exc:
            logger.opt(exception=exc).debug("build_image raised")
            result = None
            output = str(exc)
        else:
            output = result.output

        if result is None or not result.success:
            self._record(run, RolloutPhase.BUILDING, PhaseOutcome.FAILURE, t0, tag)
            self._fail(
                run,
                RolloutPhase.BUILDING,
                f"Image build failed for {tag}",
                ExitCode.BUILD_FAILED,
                resource=tag,
                details=_tail(output),
            )
            return False

        self._record(run, RolloutPhase.BUILDING, PhaseOutcome.SUCCESS, t0, tag)
        return True

    def _restart(self, run: RolloutRun, target: DeploymentTarget) -> bool:
        if not self._check_budget(run, RolloutPhase.RESTARTING):
            return False
        resource = f"deployment/{target.name}"
        self._enter(run, RolloutPhase.RESTARTING, resource)
        t0 = self.clock()

        steps = []
        if target.replicas is not None:
            steps.append(
                lambda: self.cluster.scale_deployment(
                    target.name, target.namespace, target.replicas or 0
                )
            )
        steps.append(
            lambda: self.cluster.restart_deployment(target.name, target.namespace)
        )

        for step in steps:
            try:
                outcome = step()
                ok, message = outcome.success, outcome.message
            except Exception as exc:
                ok, message = False, str(exc)
            if not ok:
                self._record(run, RolloutPhase.RESTARTING, PhaseOutcome.FAILURE, t0)
                self._fail(
                    run,
                    RolloutPhase.RESTARTING,
                    f"Rolling restart of {resource} was rejected",
                    ExitCode.APPLY_FAILED,
                    resource=resource,
                    last_state=message,
                )
                return False

        self._record(run, RolloutPhase.RESTARTING, PhaseOutcome.SUCCESS, t0, resource)
        return True

    def _await_target(self, run: RolloutRun, target: DeploymentTarget) -> bool:
        if not self._check_budget(run, RolloutPhase.AWAITING_TARGET):
            return False
        self._enter(run, RolloutPhase.AWAITING_TARGET, target.selector)
        t0 = self.clock()
        waited = self.gate.wait_until_ready(
            target.readiness_condition(), cancel=self._cancel, deadline=self._deadline
        )
        return self._gate_passed(
            run,
            RolloutPhase.AWAITING_TARGET,
            waited,
            t0,
            f"deployment/{target.name}",
            ExitCode.TARGET_TIMEOUT,
        )

    def _smoke_test(self, run: RolloutRun, target: DeploymentTarget) -> None:
        self._enter(run, RolloutPhase.SMOKE_TESTING)
        t0 = self.clock()
        if self.options.skip_smoke or self.smoke is None:
            self._record(run, RolloutPhase.SMOKE_TESTING, PhaseOutcome.SKIPPED, t0)
            return

        try:
            report = self.smoke.run(target)
        except Exception as exc:
            self._log(run, f"Smoke check raised: {exc}", level="WARNING")
            self._record(
                run, RolloutPhase.SMOKE_TESTING, PhaseOutcome.FAILURE, t0, str(exc)
            )
            return

        run.smoke_report = report
        detail = f"{report.succeeded}/{report.attempted} ok"
        if report.healthy:
            self._record(run, RolloutPhase.SMOKE_TESTING, PhaseOutcome.SUCCESS, t0, detail)
        else:
            self._log(run, f"Smoke check degraded: {detail}", level="WARNING")
            self._record(run, RolloutPhase.SMOKE_TESTING, PhaseOutcome.FAILURE, t0, detail)

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _gate_passed(
        self,
        run: RolloutRun,
        phase: RolloutPhase,
        waited: ReadinessResult,
        t0: float,
        resource: str,
        timeout_code: ExitCode,
    ) -> bool:
        if waited.ready:
            self._record(run, phase, PhaseOutcome.SUCCESS, t0, resource)
            return True

        if waited.reason == "cancelled":
            outcome, code = PhaseOutcome.CANCELLED, ExitCode.CANCELLED
        elif waited.reason == "deadline":
            outcome, code = PhaseOutcome.TIMEOUT, ExitCode.DEADLINE_EXCEEDED
        else:
            outcome, code = PhaseOutcome.TIMEOUT, timeout_code

        self._record(run, phase, outcome, t0, resource)
        error = waited.error
        self._fail(
            run,
            phase,
            error.message if error else f"{resource} not ready",
            code,
            resource=resource,
            last_state=str(waited.last_state) if waited.last_state else None,
            details=_retry_hint(error),
        )
        return False

    def _check_budget(self, run: RolloutRun, phase: RolloutPhase) -> bool:
        if self._cancel.is_set():
            self._fail(run, phase, "Rollout cancelled", ExitCode.CANCELLED)
            return False
        if self._deadline is not None and self.clock() >= self._deadline:
            self._fail(
                run,
                phase,
                f"Rollout deadline of {self.options.deadline:g}s exceeded",
                ExitCode.DEADLINE_EXCEEDED,
            )
            return False
        return True

    def _enter(self, run: RolloutRun, phase: RolloutPhase, detail: str = "") -> None:
        run.phase = phase
        self._log(run, f"-> {phase.value}" + (f" ({detail})" if detail else ""))
        if self.on_phase is not None:
            self.on_phase(phase, detail)

    def _record(
        self,
        run: RolloutRun,
        phase: RolloutPhase,
        outcome: PhaseOutcome,
        t0: float,
        detail: str = "",
    ) -> None:
        duration_ms = int(round((self.clock() - t0) * 1000))
        run.records.append(PhaseRecord(phase, outcome, duration_ms, detail))

    def _fail(
        self,
        run: RolloutRun,
        phase: RolloutPhase,
        cause: str,
        exit_code: ExitCode,
        *,
        resource: str | None = None,
        last_state: str | None = None,
        details: str | None = None,
    ) -> None:
        run.failure = FailureInfo(
            phase=phase,
            cause=cause,
            exit_code=exit_code,
            resource=resource,
            last_state=last_state,
            details=details,
        )
        self._log(run, f"Failed in {phase.value}: {cause}", level="ERROR")
        self._enter(run, RolloutPhase.FAILED, phase.value)

    def _log(self, run: RolloutRun, message: str, *, level: str = "INFO") -> None:
        run.log.append(message)
        logger.log(level, message)


def _tail(output: str, lines: int = 20) -> str | None:
    if not output:
        return None
    return "\n".join(output.strip().splitlines()[-lines:])


def _retry_hint(error: ReadinessTimeoutError | None) -> str:
    hint = "Re-running the rollout is safe: apply is idempotent."
    if error is None:
        return hint
    return (
        f"{error.details or ''}\n"
        f"Inspect with: kubectl get pods -n {error.namespace} -l {error.selector}\n"
        f"{hint}"
    ).strip()
