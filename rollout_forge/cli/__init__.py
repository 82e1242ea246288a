"""Main CLI application module.

This module provides the main entry point for the rollout-forge CLI.

Commands:
- setup: Start the local cluster and run the first rollout
- deploy: Build and roll out the app
- stop: Stop port-forwards and the local cluster
- status: Pods, services and recent rollouts
- plan: Dependency tiers, without touching the cluster
"""

from pathlib import Path
from typing import Annotated

import typer

from rollout_forge.config import CONFIG_PATH
from rollout_forge.logging_config import configure_logging

from .commands import deploy, plan, setup, status, stop
from .context import build_cli_context

app = typer.Typer(
    help="🚀 rollout-forge - ordered, readiness-gated rollouts to Kubernetes",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def _configure(
    ctx: typer.Context,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            envvar="ROLLOUT_FORGE_CONFIG",
            help="Path to rollout.yaml",
        ),
    ] = CONFIG_PATH,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show debug logging")
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Also write DEBUG logs to this file"),
    ] = None,
) -> None:
    configure_logging(verbose, log_file)
    ctx.obj = build_cli_context(config, verbose=verbose)


app.command()(setup)
app.command()(deploy)
app.command()(stop)
app.command()(status)
app.command()(plan)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
