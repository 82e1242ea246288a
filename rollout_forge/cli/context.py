"""CLI context and dependency container."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import click
import typer

from rollout_forge.cli.deployment.shell_commands import ShellCommands
from rollout_forge.cli.shared.console import CLIConsole, console
from rollout_forge.config import CONFIG_PATH, RolloutConfig, load_config
from rollout_forge.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants


@dataclass
class CLIContext:
    """Runtime dependencies for CLI commands.

    The configuration is loaded on first use so commands that can run
    without one (``stop``) do not require the file to exist.
    """

    console: CLIConsole
    config_path: Path
    commands: ShellCommands
    constants: DeploymentConstants = DEFAULT_CONSTANTS
    verbose: bool = False
    _config: RolloutConfig | None = field(default=None, repr=False)

    @property
    def project_root(self) -> Path:
        return self.config_path.resolve().parent

    @property
    def state_dir(self) -> Path:
        return self.project_root / self.constants.STATE_DIR

    @property
    def forwards_state_file(self) -> Path:
        return self.state_dir / self.constants.FORWARDS_STATE_FILE

    @property
    def has_config(self) -> bool:
        return self.config_path.exists()

    def config(self) -> RolloutConfig:
        """Load (once) and return the rollout configuration.

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config


def build_cli_context(
    config_path: Path = CONFIG_PATH, *, verbose: bool = False
) -> CLIContext:
    """Build a fresh CLIContext."""
    project_root = config_path.resolve().parent
    return CLIContext(
        console=console,
        config_path=config_path,
        commands=ShellCommands(project_root),
        verbose=verbose,
    )


def get_cli_context(ctx: typer.Context | None = None) -> CLIContext:
    """Return the CLIContext from Typer, falling back to a new instance."""
    context = ctx or click.get_current_context(silent=True)
    if context and isinstance(context.obj, CLIContext):
        return context.obj
    return build_cli_context()
