"""Docker image builds for rollouts.

Builds the target image either against the local Docker daemon or, for
Minikube clusters, inside Minikube's daemon (the equivalent of
``eval $(minikube docker-env)``) so the cluster can use the image without a
registry push.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from rollout_forge.orchestration.models import BuildResult

if TYPE_CHECKING:
    from .shell_commands import ShellCommands


class DockerImageBuilder:
    """ImageBuilder implementation over the docker CLI.

    Attributes:
        commands: Shell command executor
        use_minikube_env: Build inside Minikube's Docker daemon
        on_output: Receives each line of build output
    """

    def __init__(
        self,
        commands: ShellCommands,
        *,
        use_minikube_env: bool = False,
        on_output: Callable[[str], None] | None = None,
    ) -> None:
        self.commands = commands
        self.use_minikube_env = use_minikube_env
        self.on_output = on_output

    def build_image(self, tag: str, context: Path) -> BuildResult:
        """Build ``tag`` from ``context``.

        Never raises; failures (including an unavailable Minikube daemon or a
        missing Dockerfile) are reported in the result.
        """
        if not (context / "Dockerfile").exists():
            return BuildResult(
                image=tag,
                success=False,
                output=f"No Dockerfile found in {context}",
            )

        env: dict[str, str] | None = None
        if self.use_minikube_env:
            env = self.commands.minikube.docker_env()
            if env is None:
                return BuildResult(
                    image=tag,
                    success=False,
                    output="Could not read minikube docker-env; is minikube running?",
                )
            logger.debug(f"Building against {env.get('DOCKER_HOST', 'minikube docker')}")

        result = self.commands.docker.build_image(
            tag, context, env=env, on_output=self.on_output
        )
        output = result.stdout or result.stderr
        if not result.success:
            logger.error(f"docker build {tag} failed with exit code {result.returncode}")
        return BuildResult(image=tag, success=result.success, output=output)

