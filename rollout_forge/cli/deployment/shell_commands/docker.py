"""Docker command abstractions."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from rollout_forge.infra.k8s.controller import CommandResult

if TYPE_CHECKING:
    from .runner import CommandRunner


class DockerCommands:
    """Docker-related shell commands."""

    def __init__(self, runner: CommandRunner) -> None:
        """Initialize Docker commands.

        Args:
            runner: Command runner for executing shell commands
        """
        self._runner = runner

    def build_image(
        self,
        image_tag: str,
        context: Path,
        *,
        dockerfile: Path | None = None,
        env: Mapping[str, str] | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Build an image from a directory.

        Args:
            image_tag: Tag to apply (e.g., "asasikumar/gke-express-hello-world:latest")
            context: Build context directory
            dockerfile: Dockerfile path when not ``context/Dockerfile``
            env: Extra environment, e.g. the DOCKER_HOST of Minikube's daemon
            on_output: Callback receiving each line of build output

        Returns:
            CommandResult with the build log in stdout
        """
        cmd = ["docker", "build", "-t", image_tag]
        if dockerfile is not None:
            cmd.extend(["-f", str(dockerfile)])
        cmd.append(str(context))
        return self._runner.run_streaming(cmd, env=env, on_output=on_output)

    def image_exists(self, image_tag: str, *, env: Mapping[str, str] | None = None) -> bool:
        """Check if an image with the given tag exists in the (selected) daemon.

        Example:
            >>> docker.image_exists("express-app:latest")
            True
        """
        result = self._runner.run(["docker", "images", "-q", image_tag], env=env)
        return bool(result.stdout.strip())
