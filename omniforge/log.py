"""
Orchestrator Logging
====================
Loguru setup for leveled step/skip/ok/dry/error reporting.

Console verbosity follows the bootstrap LOG_LEVEL values:
    quiet   - errors only
    status  - status updates per unit/package (default)
    verbose - full debug output

LOG_FORMAT=json switches the console sink to serialized records for CI.
A log file, when configured, always receives verbose output.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from omniforge.config import LOGGING

# name -> (severity, color); built-in INFO is 20, SUCCESS is 25
STATUS_LEVELS = {
    "STEP": (21, "<cyan><bold>"),
    "DRY": (22, "<magenta>"),
    "SKIP": (23, "<dim>"),
    "OK": (24, "<green>"),
}

CONSOLE_THRESHOLDS = {
    "quiet": "ERROR",
    "status": "INFO",
    "verbose": "DEBUG",
}

_PLAIN_FORMAT = "<level>[{level}]</level> {message}"
_FILE_FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] [{level}] {message}"


def _register_levels() -> None:
    for name, (no, color) in STATUS_LEVELS.items():
        try:
            logger.level(name)
        except ValueError:
            logger.level(name, no=no, color=color)


_register_levels()


def configure_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    sink=None,
) -> None:
    """Replace loguru handlers with orchestrator sinks.

    Args:
        level: quiet, status or verbose (unknown values behave like status)
        fmt: plain or json
        log_file: Optional file receiving every record
        sink: Console sink, defaults to stderr
    """
    level = (level or LOGGING.LEVEL).lower()
    fmt = (fmt or LOGGING.FORMAT).lower()
    log_file = log_file if log_file is not None else (LOGGING.FILE or None)

    logger.remove()
    threshold = CONSOLE_THRESHOLDS.get(level, "INFO")
    console = sink if sink is not None else sys.stderr

    if fmt == "json":
        logger.add(console, level=threshold, serialize=True)
    else:
        logger.add(console, level=threshold, format=_PLAIN_FORMAT, colorize=None)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(path, level="DEBUG", format=_FILE_FORMAT, serialize=(fmt == "json"))

    logger.debug(f"Logging configured (level={level}, format={fmt}, file={log_file or '-'})")


def log_step(message: str) -> None:
    logger.log("STEP", message)


def log_skip(message: str) -> None:
    logger.log("SKIP", message)


def log_ok(message: str) -> None:
    logger.log("OK", message)


def log_dry(message: str) -> None:
    logger.log("DRY", message)


def log_section(title: str) -> None:
    """Print a section divider at INFO level."""
    logger.info(f"=== {title} ===")
