"""
Logging configuration.

Library modules log through `structlog.get_logger()`; entry points call
`configure_logging` once. Output goes to stderr so stdout stays free
for command results.
"""

import logging
import os
import sys
from typing import Optional

import structlog

from tier_router.config.loader import LOG_LEVEL_ENV


def configure_logging(level: Optional[str] = None, json: bool = False) -> None:
    """Configure structlog for the process.

    Args:
        level: Log level name; defaults to $TIER_ROUTER_LOG_LEVEL or WARNING
        json: Render JSON lines instead of the console format
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV, "WARNING")).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors="NO_COLOR" not in os.environ)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        # sys.stderr is looked up per logger, not at configure time
        logger_factory=lambda *args: structlog.PrintLogger(sys.stderr),
        cache_logger_on_first_use=False,
    )
