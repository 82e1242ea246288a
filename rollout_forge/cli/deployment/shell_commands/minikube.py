"""Minikube command abstractions.

Lifecycle of the local development cluster plus access to its Docker
daemon (``minikube docker-env``) and node IP.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from loguru import logger

from rollout_forge.infra.k8s.controller import CommandResult

if TYPE_CHECKING:
    from .runner import CommandRunner

_EXPORT_LINE = re.compile(r'^export\s+(?P<key>[A-Z_][A-Z0-9_]*)="?(?P<value>[^"]*)"?\s*$')


def parse_docker_env(output: str) -> dict[str, str]:
    """Parse ``minikube docker-env --shell bash`` output.

    Example:
        >>> parse_docker_env('export DOCKER_HOST="tcp://192.168.49.2:2376"')
        {'DOCKER_HOST': 'tcp://192.168.49.2:2376'}
    """
    env = {}
    for line in output.splitlines():
        match = _EXPORT_LINE.match(line.strip())
        if match:
            env[match["key"]] = match["value"]
    return env


class MinikubeCommands:
    """Minikube-related shell commands (the LocalCluster implementation)."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        profile: str | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize Minikube commands.

        Args:
            runner: Command runner for executing shell commands
            profile: Minikube profile (``-p``); the default profile when None
            on_output: Receives output lines of long-running commands
        """
        self._runner = runner
        self.profile = profile
        self.on_output = on_output

    def _cmd(self, *args: str) -> list[str]:
        cmd = ["minikube", *args]
        if self.profile:
            cmd.extend(["-p", self.profile])
        return cmd

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def status(self) -> CommandResult:
        return self._runner.run(self._cmd("status"))

    def is_running(self) -> bool:
        """Check whether the cluster host is up."""
        result = self._runner.run(self._cmd("status", "--format={{.Host}}"))
        return result.stdout.strip() == "Running"

    def start(self, addons: Sequence[str] = ()) -> CommandResult:
        """Start the cluster, enabling addons at boot."""
        args = ["start"]
        if addons:
            args.append(f"--addons={','.join(addons)}")
        return self._runner.run_streaming(self._cmd(*args), on_output=self.on_output)

    def stop(self) -> CommandResult:
        """Stop the cluster; its state and data are preserved."""
        return self._runner.run(self._cmd("stop"))

    def delete(self) -> CommandResult:
        return self._runner.run(self._cmd("delete"))

    def enable_addon(self, name: str) -> bool:
        result = self._runner.run(self._cmd("addons", "enable", name))
        if not result.success:
            logger.warning(f"Could not enable addon {name}: {result.stderr.strip()}")
        return result.success

    def ensure_running(self, addons: Sequence[str] = ()) -> bool:
        """Start the cluster if needed and make sure every addon is enabled.

        Returns:
            True when the cluster is running with all addons enabled
        """
        if not self.is_running():
            logger.info(f"Starting minikube (addons: {', '.join(addons) or 'none'})")
            return self.start(addons).success
        return all([self.enable_addon(addon) for addon in addons])

    # =========================================================================
    # Access
    # =========================================================================

    def docker_env(self) -> dict[str, str] | None:
        """Environment pointing the docker CLI at Minikube's daemon.

        Returns:
            The variables to export, or None if minikube could not provide them
        """
        result = self._runner.run(self._cmd("docker-env", "--shell", "bash"))
        if not result.success:
            logger.warning(f"minikube docker-env failed: {result.stderr.strip()}")
            return None
        return parse_docker_env(result.stdout)

    def ip(self) -> str | None:
        result = self._runner.run(self._cmd("ip"))
        if not result.success:
            return None
        return result.stdout.strip() or None
