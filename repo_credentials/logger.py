"""Logging configuration for repo-credentials.

Modules log with structlog; events are rendered by the standard library
logging handler configured here, in one of two formats:
- JSON logging (production): Structured logs for log aggregation systems
- Standard logging (development): Human-readable logs with stacktraces

Configure via REPO_CREDENTIALS_LOG_FORMAT_JSON (default: True).
"""

import logging
import sys

import structlog
from pythonjsonlogger.json import JsonFormatter

from repo_credentials.config import Settings


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure structlog and the root logger.

    Args:
        settings: Application settings (log level and format)

    Returns:
        The package logger
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter: logging.Formatter
    if settings.log_format_json:
        formatter = JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    # botocore and google-auth are chatty at DEBUG
    for name in ("botocore", "urllib3", "google.auth"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("repo_credentials")
