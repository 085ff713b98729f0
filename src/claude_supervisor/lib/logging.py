"""Structlog configuration helpers."""

from __future__ import annotations

import logging as std_logging
import sys

import structlog
from structlog.typing import EventDict, WrappedLogger

LOG_COMPONENT = "claude-supervisor"


def _level_from_verbosity(verbosity: int) -> int:
    if verbosity <= 0:
        return std_logging.WARNING
    if verbosity == 1:
        return std_logging.INFO
    return std_logging.DEBUG


def _tag_component(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    # Child output shares stderr with our diagnostics; the tag tells them apart.
    event_dict.setdefault("component", LOG_COMPONENT)
    return event_dict


def configure_logging(json_mode: bool = False, verbosity: int = 0) -> None:
    """Configure structlog so supervisor diagnostics never mix with child stdout."""

    level = _level_from_verbosity(verbosity)
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter(f"[{LOG_COMPONENT}] %(levelname)s %(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler], force=True)

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json_mode
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _tag_component,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        # The child's stdout is forwarded verbatim; supervisor logs go to stderr only.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
