from .console import CLIConsole, console, exit_code_for, with_error_handling

__all__ = ["CLIConsole", "console", "exit_code_for", "with_error_handling"]
