"""Shell command abstractions for local cluster rollouts.

This package provides a small, well-documented interface for the shell
commands used around a rollout. It is organized by tool:

- docker: image builds
- minikube: local cluster lifecycle, docker-env and node IP

Usage:
    from rollout_forge.cli.deployment.shell_commands import ShellCommands

    commands = ShellCommands(project_root=Path("."))
    if not commands.minikube.is_running():
        commands.minikube.start(["ingress"])
"""

from pathlib import Path

from .docker import DockerCommands
from .minikube import MinikubeCommands, parse_docker_env
from .runner import CommandRunner

__all__ = [
    "ShellCommands",
    "CommandRunner",
    "DockerCommands",
    "MinikubeCommands",
    "parse_docker_env",
]


class ShellCommands:
    """Unified interface for all shell command operations.

    Attributes:
        docker: Docker-related commands
        minikube: Minikube-related commands
    """

    def __init__(self, project_root: Path, *, minikube_profile: str | None = None) -> None:
        """Initialize the shell commands executor.

        Args:
            project_root: Path to the project root directory.
                         Commands will be executed from this directory by default.
            minikube_profile: Minikube profile to target
        """
        self._project_root = Path(project_root)
        self._runner = CommandRunner(self._project_root)

        self.docker = DockerCommands(self._runner)
        self.minikube = MinikubeCommands(self._runner, profile=minikube_profile)

    @property
    def project_root(self) -> Path:
        """Get the project root path."""
        return self._project_root

    @property
    def runner(self) -> CommandRunner:
        return self._runner
