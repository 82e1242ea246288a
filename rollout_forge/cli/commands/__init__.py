"""CLI command modules.

- deploy: deploy, plan, status
- cluster: setup, stop
"""

from .cluster import setup, stop
from .deploy import deploy, plan, status

__all__ = ["deploy", "plan", "status", "setup", "stop"]
