"""Logging configuration for Landfall.

Structured logging via loguru. Logging is disabled for the ``landfall``
namespace by default (library behaviour) and enabled by the command entry
point or by calling ``_setup_logging`` with a ``LogConfig``.

Example:
    from landfall.logging import LogConfig, _setup_logging, _teardown_logging

    handler_ids = _setup_logging(LogConfig(level="DEBUG", file="landfall.log"))
    try:
        ...
    finally:
        _teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

logger.disable("landfall")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

# Bound per module (component) and per provisioning run (instance_id).
_CONTEXT_KEYS = ("component", "instance_id")


def _format_context(record: Any) -> str:
    extra = record["extra"]
    parts = [f"{key}={extra[key]}" for key in _CONTEXT_KEYS if key in extra]
    return f" [{' '.join(parts)}]" if parts else ""


CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level><dim>{extra[_ctx]}</dim> {message}"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line}{extra[_ctx]} {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration for a provisioning run.

    Attributes:
        level: Minimum console log level.
        file: Path to a log file. None disables file output.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "WARNING"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _patch_context(record: Any) -> None:
    record["extra"]["_ctx"] = _format_context(record)


def _setup_logging(config: LogConfig) -> list[int]:
    """Install the configured sinks and return their handler ids."""
    # Drop loguru's default stderr handler, it has no namespace filter.
    logger.remove()
    logger.enable("landfall")
    logger.configure(patcher=_patch_context)

    sinks: list[dict[str, Any]] = []
    if config.console:
        sinks.append({"sink": sys.stderr, "level": config.level, "format": CONSOLE_FORMAT, "colorize": True})
    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append({
            "sink": path,
            "level": "DEBUG",
            "format": FILE_FORMAT,
            "rotation": config.rotation,
            "retention": config.retention,
            "compression": "zip",
            "diagnose": False,
        })

    return [logger.add(filter="landfall", **options) for options in sinks]


def _teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers and disable logging."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("landfall")
