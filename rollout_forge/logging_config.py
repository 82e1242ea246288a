from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> <level>{level: <7}</level> {message}"
FILE_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level: <7} | {name}:{function}:{line} | {message}"


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Route loguru output for CLI runs.

    The console sink shows warnings and above (everything from DEBUG with
    ``verbose``) on stderr, leaving stdout to the rich console. An optional
    file sink always records DEBUG.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=CONSOLE_FORMAT,
        colorize=_stream_supports_color(sys.stderr),
        backtrace=verbose,
        diagnose=False,
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT, encoding="utf-8")
    logger.debug(f"Logging configured (verbose={verbose}, file={log_file})")


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except Exception:
            return False
    return False
