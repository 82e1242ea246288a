"""Readiness polling with timeout, deadline and cancellation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from .collaborators import ClusterControlPlane
from .errors import ReadinessTimeoutError
from .models import ClusterState, ReadinessCondition


@dataclass
class ReadinessResult:
    """Outcome of one wait.

    Attributes:
        ready: Whether the condition held before the budget ran out
        elapsed: Seconds spent waiting
        polls: Number of status calls made
        last_state: Last observed cluster state
        reason: "ready", "timeout", "deadline" or "cancelled"
        error: Typed failure when not ready (never raised by the gate)
    """

    ready: bool
    elapsed: float
    polls: int
    last_state: ClusterState | None = None
    reason: str = "ready"
    error: ReadinessTimeoutError | None = None

    @property
    def cancelled(self) -> bool:
        return self.reason == "cancelled"


class ReadinessGate:
    """Polls the cluster until a readiness condition holds.

    Each poll is a blocking status call followed by a sleep; the sleep is
    capped to the remaining budget, so a timeout is reported no later than
    ``timeout`` plus one poll interval.

    Args:
        cluster: Status source
        clock: Monotonic clock in seconds
        sleep: Sleep function; when omitted the gate sleeps on its
            cancellation event so ``cancel()`` interrupts a wait at once
        backoff: Multiplier applied to the poll interval after each miss
        max_interval: Upper bound for the backed-off interval
    """

    def __init__(
        self,
        cluster: ClusterControlPlane,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
        backoff: float = 1.0,
        max_interval: float | None = None,
    ) -> None:
        if backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        self.cluster = cluster
        self.clock = clock
        self._sleep = sleep
        self.backoff = backoff
        self.max_interval = max_interval
        self._cancelled = threading.Event()
        self._waiting: set[threading.Event] = set()
        self._waiting_lock = threading.Lock()

    def cancel(self) -> None:
        """Abort the current (and any later) wait on this gate.

        Waits in progress sleep on their caller's cancel event, so that
        event is set as well.
        """
        self._cancelled.set()
        with self._waiting_lock:
            for event in self._waiting:
                event.set()

    def reset(self) -> None:
        self._cancelled.clear()

    def wait_until_ready(
        self,
        condition: ReadinessCondition,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> ReadinessResult:
        """Wait for a condition to hold.

        Args:
            condition: What to wait for and for how long
            cancel: Optional caller-owned event that aborts the wait
            deadline: Optional absolute clock value that cuts the wait short

        Returns:
            ReadinessResult; on failure ``error`` carries the last state
        """
        start = self.clock()
        budget = condition.timeout
        reason_on_expiry = "timeout"
        if deadline is not None and deadline - start < budget:
            budget = max(0.0, deadline - start)
            reason_on_expiry = "deadline"

        logger.debug(
            "Waiting up to {:g}s for '{}' in {} to be {}",
            budget,
            condition.selector,
            condition.namespace,
            condition.expected.value,
        )

        if cancel is None:
            return self._wait(condition, start, budget, reason_on_expiry, None)
        with self._waiting_lock:
            self._waiting.add(cancel)
        try:
            return self._wait(condition, start, budget, reason_on_expiry, cancel)
        finally:
            with self._waiting_lock:
                self._waiting.discard(cancel)

    def _wait(
        self,
        condition: ReadinessCondition,
        start: float,
        budget: float,
        reason_on_expiry: str,
        cancel: threading.Event | None,
    ) -> ReadinessResult:
        interval = condition.poll_interval
        polls = 0
        last_state: ClusterState | None = None

        while True:
            last_state = self._poll(condition)
            polls += 1
            elapsed = self.clock() - start

            if last_state.satisfies(condition):
                logger.debug(
                    "'{}' ready after {:.1f}s ({} polls)",
                    condition.selector,
                    elapsed,
                    polls,
                )
                return ReadinessResult(
                    ready=True, elapsed=elapsed, polls=polls, last_state=last_state
                )

            if self._is_cancelled(cancel):
                return self._failure(condition, elapsed, polls, last_state, "cancelled")

            if elapsed >= budget:
                return self._failure(
                    condition, elapsed, polls, last_state, reason_on_expiry
                )

            logger.debug("'{}' not ready yet: {}", condition.selector, last_state)
            if self._pause(min(interval, budget - elapsed), cancel):
                return self._failure(
                    condition, self.clock() - start, polls, last_state, "cancelled"
                )

            interval = interval * self.backoff
            if self.max_interval is not None:
                interval = min(interval, self.max_interval)

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _poll(self, condition: ReadinessCondition) -> ClusterState:
        try:
            return self.cluster.get_status(condition)
        except Exception as exc:
            logger.warning("Status check for '{}' failed: {}", condition.selector, exc)
            return ClusterState(message=f"status check failed: {exc}")

    def _is_cancelled(self, cancel: threading.Event | None) -> bool:
        return self._cancelled.is_set() or (cancel is not None and cancel.is_set())

    def _pause(self, seconds: float, cancel: threading.Event | None) -> bool:
        """Sleep between polls. Returns True when cancelled meanwhile."""
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            self._cancelled.wait(seconds)
        return self._is_cancelled(cancel)

    def _failure(
        self,
        condition: ReadinessCondition,
        elapsed: float,
        polls: int,
        last_state: ClusterState | None,
        reason: str,
    ) -> ReadinessResult:
        error = ReadinessTimeoutError(
            condition.selector,
            condition.namespace,
            condition.timeout,
            last_state,
            reason=reason,
        )
        logger.warning(
            "Gave up waiting for '{}' after {:.1f}s ({}): {}",
            condition.selector,
            elapsed,
            reason,
            last_state,
        )
        return ReadinessResult(
            ready=False,
            elapsed=elapsed,
            polls=polls,
            last_state=last_state,
            reason=reason,
            error=error,
        )
