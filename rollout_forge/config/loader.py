"""Load and validate ``rollout.yaml``."""

from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from rollout_forge.infra.constants import DEFAULT_CONSTANTS
from rollout_forge.orchestration.errors import ConfigError

from .env import substitute_env_vars
from .models import RolloutConfig

CONFIG_PATH = Path(DEFAULT_CONSTANTS.CONFIG_FILE)


def load_config(file_path: Path = CONFIG_PATH, *, load_env: bool = True) -> RolloutConfig:
    """
    Load a rollout configuration file with environment variable substitution.

    Args:
        file_path: Path to the YAML file (default: rollout.yaml)
        load_env: Load a ``.env`` file next to the config before substituting
            (existing environment variables win)

    Returns:
        The validated configuration, with relative paths anchored at the
        config file's directory

    Raises:
        ConfigError: If the file is missing, a required environment variable
            is unset, the YAML is malformed, the top-level ``rollout`` key is
            missing, or validation fails

    YAML Structure Requirements:
        The YAML file must have a top-level 'rollout:' key containing the
        configuration data.
    """
    if not file_path.exists():
        raise ConfigError(
            f"Configuration file not found: {file_path}",
            details="Create one or pass --config PATH.",
        )

    base_dir = file_path.resolve().parent
    if load_env and (base_dir / ".env").exists():
        logger.debug(f"Loading environment from {base_dir / '.env'}")
        load_dotenv(base_dir / ".env", override=False)

    content = file_path.read_text(encoding="utf-8")
    try:
        content = substitute_env_vars(content)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration {file_path}", details=str(e)) from e

    try:
        loaded: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in {file_path}", details=str(e)) from e

    if not isinstance(loaded, dict) or "rollout" not in loaded:
        raise ConfigError(
            f"Invalid YAML structure in {file_path}",
            details="Missing top-level 'rollout' key.",
        )

    try:
        config = RolloutConfig.model_validate(loaded["rollout"] or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration {file_path}", details=str(e)) from e

    logger.info(
        f"Loaded {file_path}: namespace={config.namespace}, "
        f"{len(config.resources)} resources, target={config.target.deployment}"
    )
    return config.with_base_dir(base_dir)
