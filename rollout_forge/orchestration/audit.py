"""Append-only audit log of rollout runs (one JSON object per line)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from .models import RolloutRun


class RolloutLog:
    """JSON Lines sink for RolloutRun summaries."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, run: RolloutRun) -> None:
        """Append a run summary. I/O errors are logged, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(run.to_dict()) + "\n")
        except OSError as exc:
            logger.warning("Could not write rollout log {}: {}", self.path, exc)

    def read(self) -> list[dict[str, Any]]:
        """Read every recorded run, skipping malformed lines."""
        if not self.path.exists():
            return []
        entries = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping malformed rollout log line: {}", line)
        return entries
