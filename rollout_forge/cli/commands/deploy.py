"""Rollout commands: deploy, plan and status."""

from typing import Annotated

import typer

from rollout_forge.cli.context import get_cli_context
from rollout_forge.cli.deployment.deployer import DeployRequest
from rollout_forge.cli.shared.console import with_error_handling

from .shared import finish_run, get_deployer

NamespaceOption = Annotated[
    str | None,
    typer.Option("--namespace", "-n", help="Namespace to inspect (default: configured namespace)"),
]


@with_error_handling
def deploy(
    ctx: typer.Context,
    skip_build: Annotated[
        bool, typer.Option("--skip-build", help="Reuse the existing image")
    ] = False,
    skip_smoke: Annotated[
        bool, typer.Option("--skip-smoke", help="Skip post-deploy smoke requests")
    ] = False,
    image: Annotated[
        str | None, typer.Option("--image", help="Image tag to build (default: target.image)")
    ] = None,
    dependency_timeout: Annotated[
        float | None,
        typer.Option("--dependency-timeout", min=0.1, help="Seconds to wait for each dependency"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=0.1, help="Seconds to wait for the target to become ready"),
    ] = None,
    deadline: Annotated[
        float | None,
        typer.Option("--deadline", min=0.1, help="Overall budget for the rollout in seconds"),
    ] = None,
    forward: Annotated[
        bool, typer.Option("--forward", "-f", help="Port-forward the app after a successful rollout")
    ] = False,
    detach: Annotated[
        bool,
        typer.Option("--detach", "-d", help="With --forward: keep forwards running after exit"),
    ] = False,
) -> None:
    """Build the app image and roll it out.

    Applies every resource in dependency order, waits for dependencies,
    builds the image, restarts the deployment and waits until it is ready.

    Examples:
        rollout-forge deploy
        rollout-forge deploy --skip-build --timeout 600
        rollout-forge deploy --forward --detach
    """
    cli_ctx = get_cli_context(ctx)
    if detach and not forward:
        cli_ctx.console.warn("--detach implies --forward, enabling it")
        forward = True

    cli_ctx.console.print_header("Rolling out")
    deployer = get_deployer(cli_ctx)
    run = deployer.deploy(
        DeployRequest(
            skip_build=skip_build,
            skip_smoke=skip_smoke,
            image_tag=image,
            dependency_timeout=dependency_timeout,
            target_timeout=timeout,
            deadline=deadline,
            forward=forward,
            detach=detach,
        )
    )
    finish_run(cli_ctx, run)


@with_error_handling
def plan(ctx: typer.Context) -> None:
    """Show the apply tiers without touching the cluster.

    Examples:
        rollout-forge plan
    """
    cli_ctx = get_cli_context(ctx)
    deployer = get_deployer(cli_ctx)
    tiers = deployer.plan()
    cli_ctx.console.print_header("Rollout plan")
    deployer.status_display.show_plan(tiers)
    cli_ctx.console.info(
        f"{sum(len(tier) for tier in tiers)} resources in {len(tiers)} tiers, "
        f"then build and restart deployment/{deployer.config.target.deployment}"
    )


@with_error_handling
def status(
    ctx: typer.Context,
    namespace: NamespaceOption = None,
    history: Annotated[
        int, typer.Option("--history", min=0, help="Number of recent rollouts to list")
    ] = 5,
) -> None:
    """Show pods, services and recent rollouts.

    Examples:
        rollout-forge status
        rollout-forge status -n other-namespace --history 0
    """
    cli_ctx = get_cli_context(ctx)
    cli_ctx.console.print_header("Cluster status")
    get_deployer(cli_ctx, require_config=False).show_status(
        history, namespace=namespace
    )
