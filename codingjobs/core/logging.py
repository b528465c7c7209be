"""Structured logging for the API, the CLI and the arq worker.

Library modules log through ``logging.getLogger(__name__)``; the web app and
the worker use ``structlog.get_logger()`` and bind ``request_id`` or
``job_id``/``attempt`` as context variables. Both end up in the same
handlers with the same renderer.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILE = Path("logs/codingjobs.log")


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level; defaults to ``LOG_LEVEL`` (INFO)
        log_format: ``json`` or ``text``; defaults to ``LOG_FORMAT``, with the
            legacy ``JSON_LOGS=true`` switch still honoured
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if log_format is None:
        log_format = os.getenv("LOG_FORMAT", "text").lower()
        if os.getenv("JSON_LOGS", "false").lower() == "true":
            log_format = "json"

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    # Only when the logs/ directory was created by the deployment
    if LOG_FILE.parent.exists():
        handlers.append(logging.FileHandler(LOG_FILE))

    logging.basicConfig(format="%(message)s", handlers=handlers, level=level, force=True)
