"""Shared helpers for command modules."""

from __future__ import annotations

from rollout_forge.cli.context import CLIContext
from rollout_forge.cli.deployment.deployer import RolloutDeployer
from rollout_forge.config import RolloutConfig
from rollout_forge.orchestration.models import RolloutRun


def get_deployer(
    ctx: CLIContext,
    *,
    require_config: bool = True,
) -> RolloutDeployer:
    """Build the deployer for the configured project.

    Args:
        ctx: CLI context
        require_config: Fail when rollout.yaml is missing; otherwise fall back
            to built-in defaults

    Raises:
        ConfigError: If the configuration is required but missing or invalid
    """
    if require_config or ctx.has_config:
        config = ctx.config()
    else:
        config = RolloutConfig().with_base_dir(ctx.project_root)
    return RolloutDeployer(
        config,
        ctx.console,
        ctx.commands,
        state_file=ctx.forwards_state_file,
        constants=ctx.constants,
    )


def finish_run(ctx: CLIContext, run: RolloutRun) -> None:
    """Report a finished run and exit with its code when it failed."""
    if run.succeeded:
        ctx.console.ok("Rollout complete")
        return

    failure = run.failure
    if failure is None:
        ctx.console.handle_error("Rollout did not finish", exit_code=int(run.exit_code))
        return

    lines = [f"Phase: {failure.phase.value}"]
    if failure.resource:
        lines.append(f"Resource: {failure.resource}")
    if failure.last_state:
        lines.append(f"Last state: {failure.last_state}")
    if failure.details:
        lines.append("")
        lines.append(failure.details)
    ctx.console.handle_error(failure.cause, "\n".join(lines), exit_code=int(failure.exit_code))
