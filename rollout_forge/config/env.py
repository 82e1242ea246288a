"""Environment variable substitution for configuration files."""

import os
import re

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variable placeholders in text.

    Supports formats:
    - ${VAR_NAME} - required variable (raises error if missing)
    - ${VAR_NAME:-default} - optional with default value
    - ${VAR_NAME:?error_message} - required with custom error message

    Raises:
        ValueError: If a required variable is not set
    """

    def replacer(match: re.Match[str]) -> str:
        var_expr = match.group(1)

        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)

        if ":?" in var_expr:
            var_name, error_msg = var_expr.split(":?", 1)
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable {var_name}: {error_msg}")
            return value

        value = os.getenv(var_expr)
        if value is None:
            raise ValueError(f"Required environment variable {var_expr} not set")
        return value

    return _PLACEHOLDER.sub(replacer, text)
