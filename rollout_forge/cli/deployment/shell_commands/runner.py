"""Command runner for executing shell commands.

This module provides the base command execution functionality used by
the docker and minikube command modules.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from loguru import logger

from rollout_forge.infra.k8s.controller import CommandResult


class CommandRunner:
    """Low-level command executor with consistent result handling.

    A missing executable is reported as a failed CommandResult (return
    code 127) rather than an exception, so callers only ever inspect results.
    """

    def __init__(self, project_root: Path) -> None:
        """Initialize the command runner.

        Args:
            project_root: Path to the project root directory.
                         Commands will be executed from this directory by default.
        """
        self.project_root = project_root

    def _environment(self, extra: Mapping[str, str] | None) -> dict[str, str] | None:
        if not extra:
            return None
        env = os.environ.copy()
        env.update(extra)
        return env

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        capture_output: bool = True,
    ) -> CommandResult:
        """Execute a shell command and return structured result.

        Args:
            cmd: Command and arguments as a sequence
            cwd: Working directory (defaults to project_root)
            env: Extra environment variables layered over the current ones
            capture_output: Whether to capture stdout/stderr

        Returns:
            CommandResult with success status, output, and return code
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                list(cmd),
                cwd=cwd or self.project_root,
                env=self._environment(env),
                capture_output=capture_output,
                text=True,
            )
        except FileNotFoundError as e:
            return CommandResult(success=False, stderr=str(e), returncode=127)
        return CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=result.returncode,
        )

    def run_streaming(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        on_output: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Execute a shell command with real-time output streaming.

        Args:
            cmd: Command and arguments as a sequence
            cwd: Working directory (defaults to project_root)
            env: Extra environment variables layered over the current ones
            on_output: Callback function called with each line of output.
                      If None, output is collected but not streamed.

        Returns:
            CommandResult with success status, collected output (stderr merged
            into stdout), and return code
        """
        logger.debug(f"Streaming: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                list(cmd),
                cwd=cwd or self.project_root,
                env=self._environment(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            return CommandResult(success=False, stderr=str(e), returncode=127)

        stdout_lines: list[str] = []
        if process.stdout:
            for line in iter(process.stdout.readline, ""):
                line = line.rstrip("\n")
                if line:
                    stdout_lines.append(line)
                    if on_output:
                        on_output(line)

        process.wait()

        return CommandResult(
            success=process.returncode == 0,
            stdout="\n".join(stdout_lines),
            stderr="",
            returncode=process.returncode or 0,
        )
