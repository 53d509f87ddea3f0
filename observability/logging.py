"""Logging configuration for the backup tool.

structlog renders the events emitted by the backup modules on top of the
standard library ``logging`` handlers: JSON lines for log collectors or a
readable console layout for interactive runs.
"""

from __future__ import annotations

import json
import logging
import sys
from functools import partial

import structlog

get_logger = structlog.get_logger


def configure_logging(level: str | int = "INFO", *, json_output: bool = False) -> None:
    """Configure stdlib logging and structlog."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)

    renderer = (
        structlog.processors.JSONRenderer(serializer=partial(json.dumps, ensure_ascii=False, default=str))
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
