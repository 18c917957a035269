"""
Logging setup for the registry service and CLI.

Modules log through ``logging.getLogger(__name__)``; this installs a single
handler on the ``govreg`` logger, in human or JSON-lines format.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

from .config import get_log_json, get_log_level

ROOT_LOGGER = "govreg"
HUMAN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data)


def configure_logging(
    level: Optional[str] = None,
    json_output: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the ``govreg`` logger. Safe to call more than once.

    Args:
        level: Level name; defaults to ``GOVREG_LOG_LEVEL``.
        json_output: JSON lines instead of text; defaults to ``GOVREG_LOG_JSON``.
        stream: Output stream (stderr by default).
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel((level or get_log_level()).upper())

    if json_output is None:
        json_output = get_log_json()

    for handler in list(logger.handlers):
        if getattr(handler, "_govreg", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(HUMAN_FORMAT))
    handler._govreg = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger
