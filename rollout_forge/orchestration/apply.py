"""Tier-by-tier resource application."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from loguru import logger

from .collaborators import ClusterControlPlane
from .errors import ApplyError
from .models import ApplyResult, ResourceOutcome, ResourceSpec


class ApplyEngine:
    """Applies resource definitions through the cluster control plane.

    Idempotence is delegated to the apply primitive: applying an unchanged
    spec set twice reports zero changed resources the second time, and the
    engine adds no side effects of its own.
    """

    def __init__(self, cluster: ClusterControlPlane) -> None:
        self.cluster = cluster

    def apply(self, tier: Sequence[ResourceSpec]) -> ApplyResult:
        """Apply every resource in a tier.

        A failing resource does not stop the remaining ones, so a single run
        reports every rejected resource. The tier is failed overall when any
        resource failed.

        Args:
            tier: Resources with no ordering constraints between them

        Returns:
            ApplyResult with one outcome per resource
        """
        result = ApplyResult()
        for spec in tier:
            outcome = self._apply_one(spec)
            result.outcomes.append(outcome)
            if outcome.success:
                state = "changed" if outcome.changed else "unchanged"
                logger.info("Applied {} ({})", spec.identity, state)
            else:
                logger.error("Apply failed for {}: {}", spec.identity, outcome.message)
        return result

    def apply_all(self, tiers: Iterable[Sequence[ResourceSpec]]) -> ApplyResult:
        """Apply tiers in order, stopping after the first failed tier."""
        total = ApplyResult()
        for index, tier in enumerate(tiers):
            result = self.apply(tier)
            total = total.merge(result)
            if not result.success:
                logger.warning("Tier {} failed; later tiers not applied", index)
                break
        return total

    def _apply_one(self, spec: ResourceSpec) -> ResourceOutcome:
        try:
            return self.cluster.apply_resource(spec)
        except Exception as exc:
            logger.opt(exception=exc).debug("apply_resource raised for {}", spec.identity)
            return ResourceOutcome(
                resource=spec.identity,
                success=False,
                message=str(exc) or exc.__class__.__name__,
            )

    @staticmethod
    def errors(result: ApplyResult) -> list[ApplyError]:
        """Typed errors for every failed outcome in a result."""
        return [ApplyError(o.resource, o.message or "rejected") for o in result.failed]
