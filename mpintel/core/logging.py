import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

# Third-party loggers that drown out pipeline events at INFO
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosqlite", "arq.jobs")


def _use_json(log_format: str | None) -> bool:
    if log_format is not None:
        return log_format.lower() == "json"
    return os.getenv("JSON_LOGS", "false").lower() == "true"


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog over stdlib logging for the API, worker and CLI.

    ``log_format`` is ``json`` or ``text``; when omitted, ``JSON_LOGS=true``
    selects JSON. Pipeline modules using ``logging.getLogger`` and those
    using ``structlog.get_logger`` end up on the same handlers.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _use_json(log_format):
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = Path(os.getenv("LOG_FILE", "logs/mpintel.log"))
    if log_file.parent.exists():
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
