"""Rollout configuration (``rollout.yaml``)."""

from .env import substitute_env_vars
from .loader import CONFIG_PATH, load_config
from .models import (
    ClusterConfig,
    ForwardConfig,
    IngressConfig,
    ProbeConfig,
    ResourceConfig,
    RolloutConfig,
    SmokeConfig,
    TargetConfig,
    TimeoutsConfig,
)

__all__ = [
    "CONFIG_PATH",
    "load_config",
    "substitute_env_vars",
    "RolloutConfig",
    "ClusterConfig",
    "ResourceConfig",
    "TargetConfig",
    "ProbeConfig",
    "TimeoutsConfig",
    "SmokeConfig",
    "ForwardConfig",
    "IngressConfig",
]
