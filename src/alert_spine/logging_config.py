"""
Logging configuration.

Single entry point for structured logging.  Reads from arguments first,
then environment variables:

- ALERT_SPINE_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- ALERT_SPINE_LOG_FORMAT: json | console (default: console)

Usage:
    from alert_spine.logging_config import configure_logging
    configure_logging()
    configure_logging(level="DEBUG", format="json", force=True)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Literal

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structlog and stdlib logging for the process.

    Call once at startup (CLI entry).  Subsequent calls are no-ops unless
    ``force=True``.

    Args:
        level: Log level (overrides ALERT_SPINE_LOG_LEVEL)
        format: Output format (overrides ALERT_SPINE_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("ALERT_SPINE_LOG_LEVEL", "INFO")).upper()
    log_format = (format or os.environ.get("ALERT_SPINE_LOG_FORMAT", "console")).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )
    logging.getLogger("alert_spine").setLevel(getattr(logging, log_level))
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


__all__ = ["configure_logging", "is_configured"]
