"""rollout-forge: dependency-ordered, readiness-gated rollouts for Kubernetes."""

__version__ = "0.1.0"
