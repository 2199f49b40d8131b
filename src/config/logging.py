"""
Logging for warehouse runs.

structlog renders both its own events and records from stdlib loggers
(SQLAlchemy, Prefect, asyncio), so a run produces one stream in one format.
"""

import logging
import sys
from typing import Dict, List, Optional, TextIO

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level

from src.config.settings import get_settings

LOG_FORMATS = ("json", "text")

# Libraries that are chatty at INFO
QUIET_LOGGERS: Dict[str, int] = {
    "asyncio": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncpg": logging.WARNING,
}


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str, stream: TextIO):
    if log_format == "json":
        return JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=stream.isatty())


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Route structlog and stdlib logging through one handler.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (default: LOG_LEVEL)
        log_format: "json" or "text" (default: LOG_FORMAT)
        stream: Output stream (default: stdout)

    Raises:
        ValueError: Unknown log format
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    fmt = (log_format or settings.monitoring.log_format).lower()
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unknown log format {fmt!r}, expected one of {LOG_FORMATS}")
    stream = stream or sys.stdout
    numeric_level = getattr(logging, level, logging.INFO)

    shared = _shared_processors()
    structlog.configure(
        processors=shared + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setLevel(numeric_level)
    handler.setFormatter(ProcessorFormatter(processor=_renderer(fmt, stream), foreign_pre_chain=shared))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    levels = dict(QUIET_LOGGERS)
    levels["sqlalchemy.engine"] = logging.INFO if settings.database.echo else logging.WARNING
    for name, quiet_level in levels.items():
        logging.getLogger(name).setLevel(max(quiet_level, numeric_level))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=fmt,
        environment=settings.app_env,
    )
