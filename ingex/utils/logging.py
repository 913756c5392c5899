"""Console logging for the ingest daemon.

All output goes through one RichHandler on the root logger. The level comes
from ``LoggingConfig`` (already merged with the environment), so nothing here
reads environment variables.
"""

from __future__ import annotations

import json
import logging

from rich.logging import RichHandler

from ingex.constants import DEFAULT_LOG_LEVEL

# Client libraries that log every request at INFO/DEBUG.
QUIET_LOGGERS = ("httpx", "httpcore", "boto3", "botocore", "s3transfer", "urllib3")
DEBUG_LINE_LIMIT = 220

_active_level: int | None = None


def _level_number(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or DEFAULT_LOG_LEVEL).strip().upper()
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(
    level: int | str | None = None,
    *,
    enabled: bool = True,
    force: bool = False,
) -> None:
    """Install the rich console handler; ``enabled=False`` silences everything."""
    global _active_level

    target = _level_number(level) if enabled else logging.CRITICAL + 1
    if _active_level == target and not force:
        return

    handler = RichHandler(level=target, markup=False, show_path=False)
    logging.basicConfig(
        level=target,
        format="%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, target))
    _active_level = target


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def debug_event(logger: logging.Logger, event: str, **fields: str | int | None) -> None:
    """Log ``event=<name> key=value ...`` at debug, skipping ``None`` fields."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    parts = [f"event={event}"]
    for key, value in fields.items():
        if value is None:
            continue
        rendered = json.dumps(value, ensure_ascii=True) if isinstance(value, str) else str(value)
        parts.append(f"{key}={rendered}")
    line = " ".join(parts)
    if len(line) > DEBUG_LINE_LIMIT:
        line = line[:DEBUG_LINE_LIMIT] + "..."
    logger.debug(line)
