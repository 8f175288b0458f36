"""
CronJob Controller - Logging Configuration

Single entry point for structured logging, called once at startup.
Level and format come from settings (LOG_LEVEL, LOG_FORMAT).
"""

import logging
import sys
from typing import Optional

import structlog

from config import get_settings

_configured = False


def configure_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Configure structlog and stdlib logging.

    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level name (overrides LOG_LEVEL)
        format: "json" or "console" (overrides LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    settings = get_settings()
    log_level = (level or settings.log_level or "info").upper()
    log_format = (format or settings.log_format or "console").lower()
    level_num = getattr(logging, log_level, logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

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
        level=level_num,
        force=True,
    )
    # The kubernetes client is chatty at DEBUG
    logging.getLogger("kubernetes").setLevel(max(level_num, logging.INFO))

    _configured = True
