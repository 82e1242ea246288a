"""Local cluster lifecycle commands: setup and stop."""

from typing import Annotated

import typer

from rollout_forge.cli.context import get_cli_context
from rollout_forge.cli.deployment.deployer import DeployRequest
from rollout_forge.cli.shared.console import with_error_handling

from .shared import finish_run, get_deployer


@with_error_handling
def setup(
    ctx: typer.Context,
    recreate: Annotated[
        bool,
        typer.Option("--recreate", help="Stop and delete the existing minikube cluster first"),
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompts")] = False,
    skip_smoke: Annotated[
        bool, typer.Option("--skip-smoke", help="Skip post-deploy smoke requests")
    ] = False,
    forward: Annotated[
        bool, typer.Option("--forward", "-f", help="Port-forward the app afterwards")
    ] = False,
) -> None:
    """Start the local cluster with its addons and run the first rollout.

    Waits for the ingress controller, applies everything, builds and rolls
    out the app, then prints the hosts-file entry for the ingress host.

    Examples:
        rollout-forge setup
        rollout-forge setup --recreate -y
    """
    cli_ctx = get_cli_context(ctx)
    cli_ctx.console.print_header("Setting up local cluster")
    deployer = get_deployer(cli_ctx)
    run = deployer.setup(
        DeployRequest(skip_smoke=skip_smoke, forward=forward),
        recreate=recreate,
        yes=yes,
    )
    finish_run(cli_ctx, run)


@with_error_handling
def stop(
    ctx: typer.Context,
    cluster: Annotated[
        bool,
        typer.Option(
            "--cluster/--no-cluster",
            help="Also stop the minikube cluster (data is preserved)",
        ),
    ] = True,
) -> None:
    """Stop recorded port-forwards and, by default, the local cluster.

    Examples:
        rollout-forge stop
        rollout-forge stop --no-cluster
    """
    cli_ctx = get_cli_context(ctx)
    cli_ctx.console.print_header("Stopping")
    get_deployer(cli_ctx, require_config=False).stop(stop_cluster=cluster)
