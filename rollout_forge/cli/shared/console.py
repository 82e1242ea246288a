"""Shared console output and error handling for CLI commands."""

from collections.abc import Callable
from functools import wraps

import typer
from rich.console import Console, ConsoleRenderable
from rich.panel import Panel
from rich.status import Status

from rollout_forge.orchestration.errors import (
    ApplyError,
    BuildError,
    ConfigError,
    DeadlineExceededError,
    InvalidGraphError,
    ReadinessTimeoutError,
    RolloutError,
)
from rollout_forge.orchestration.models import ExitCode


class CLIConsole:
    """Rich console wrapper for consistent CLI output."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the CLI console.

        Args:
            console: Underlying rich console (a new one when omitted)
        """
        self.console = console or Console()

    def print(self, msg: ConsoleRenderable | str | None = None) -> None:
        self.console.print(msg)

    def status(self, status: str) -> Status:
        return self.console.status(status)

    def info(self, msg: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan]  {msg}")

    def ok(self, msg: str) -> None:
        self.console.print(f"[green]✅[/green] {msg}")

    def error(self, msg: str) -> None:
        self.console.print(f"[red]❌[/red] {msg}")

    def warn(self, msg: str) -> None:
        self.console.print(f"[yellow]⚠️[/yellow]  {msg}")

    def confirm_action(
        self,
        action: str,
        details: str | None = None,
        extra_warning: str | None = None,
        force: bool = False,
    ) -> bool:
        """Prompt user to confirm a potentially destructive action.

        Args:
            action: Description of the action (e.g., "Delete the minikube cluster")
            details: Additional details about what will be affected
            extra_warning: Extra warning message (e.g., for data loss)
            force: If True, skip the confirmation prompt

        Returns:
            True if the user confirmed, False otherwise
        """
        if force:
            return True

        warning_lines = [f"[bold red]⚠️  {action}[/bold red]"]
        if details:
            warning_lines.append(f"\n{details}")
        if extra_warning:
            warning_lines.append(f"\n[yellow]{extra_warning}[/yellow]")

        self.console.print(
            Panel(
                "\n".join(warning_lines),
                title="Confirmation Required",
                border_style="red",
            )
        )

        try:
            response = self.console.input(
                "\n[bold]Are you sure you want to proceed?[/bold] \\[y/N]: "
            )
            return response.strip().lower() in ("y", "yes")
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n[dim]Cancelled.[/dim]")
            return False

    def handle_error(
        self, message: str, details: str | None = None, exit_code: int = 1
    ) -> None:
        """Handle an error by printing a message and exiting.

        Args:
            message: Error message to display
            details: Optional additional details
            exit_code: Exit code to use
        """
        self.error(f"[bold red]{message}[/bold red]")
        if details:
            self.console.print(Panel(details, title="Details", border_style="red"))
        raise typer.Exit(exit_code)

    def print_header(self, title: str, style: str = "blue") -> None:
        """Print a styled header panel.

        Args:
            title: Header title text
            style: Border style color
        """
        self.console.print(
            Panel.fit(
                f"[bold {style}]{title}[/bold {style}]",
                border_style=style,
            )
        )

    def print_subheader(self, title: str) -> None:
        self.console.print(f"\n[bold underline]{title}[/bold underline]\n")


def exit_code_for(error: RolloutError) -> ExitCode:
    """Map an error raised outside a rollout run to the process exit code."""
    if isinstance(error, ConfigError | InvalidGraphError):
        return ExitCode.INVALID_GRAPH
    if isinstance(error, ApplyError):
        return ExitCode.APPLY_FAILED
    if isinstance(error, BuildError):
        return ExitCode.BUILD_FAILED
    if isinstance(error, DeadlineExceededError):
        return ExitCode.DEADLINE_EXCEEDED
    if isinstance(error, ReadinessTimeoutError):
        if error.reason == "deadline":
            return ExitCode.DEADLINE_EXCEEDED
        if error.reason == "cancelled":
            return ExitCode.CANCELLED
        return ExitCode.DEPENDENCY_TIMEOUT
    return ExitCode.ERROR


def with_error_handling(func: Callable[..., None]) -> Callable[..., None]:
    """Decorator to wrap command functions with standard error handling.

    RolloutError subclasses are printed with their details and mapped to an
    exit code; Ctrl-C exits with 130.

    Args:
        func: The command function to wrap

    Returns:
        Wrapped function with error handling
    """

    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> None:
        try:
            func(*args, **kwargs)
        except RolloutError as e:
            console.handle_error(e.message, e.details, exit_code=int(exit_code_for(e)))
        except KeyboardInterrupt:
            console.print("\n[dim]Operation cancelled by user.[/dim]")
            raise typer.Exit(int(ExitCode.CANCELLED)) from None

    return wrapper


# Shared console instance for consistent output
console = CLIConsole()
