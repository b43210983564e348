"""
Loguru logging configuration.

Development gets coloured console output; every other environment gets
JSON lines. Each record carries the active correlation ID, and the
security event fields (`event_type`, `user_id`, masked `ip_address`)
bound by the security event logger end up in `extra`.
"""

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from core.correlation import get_correlation_id

if TYPE_CHECKING:
    from loguru import Record


def correlation_filter(record: "Record") -> bool:
    """Attach the correlation ID to the record. Never drops messages."""
    record["extra"]["correlation_id"] = get_correlation_id() or "-"
    return True


def configure_logging(
    environment: str = "development", log_file: str | None = "logs/accountguard.log"
) -> None:
    """
    Configure Loguru for the service.

    Args:
        environment: "development" for console, anything else for JSON.
        log_file: Rotated log file path, or None to log to stderr only.
    """
    logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[correlation_id]}</cyan> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )
    is_dev = environment == "development"

    if is_dev:
        logger.add(
            sys.stderr,
            format=log_format,
            level="DEBUG",
            filter=correlation_filter,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level="INFO",
            filter=correlation_filter,
            serialize=True,
        )

    if log_file is None:
        return

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    # Security events are kept longer than ordinary application logs
    logger.add(
        log_file,
        format=log_format if is_dev else "{message}",
        level="INFO",
        filter=correlation_filter,
        rotation="10 MB",
        retention="30 days",
        serialize=not is_dev,
    )
