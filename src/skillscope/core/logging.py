"""Logging for the ``skillscope`` namespace.

Library modules only call :func:`get_logger`.  Handlers are installed by
the CLI entry point through :func:`setup_logging`, from the ``log_level``
and ``log_json`` settings.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

ROOT_LOGGER = "skillscope"
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_HANDLER_NAME = "skillscope-stream"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "WARNING",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Install the skillscope handler on *stream* (stderr by default).

    Calling it again replaces the handler installed earlier, so the level
    and format can be changed at runtime.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for existing in list(logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logger.removeHandler(existing)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the skillscope namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
