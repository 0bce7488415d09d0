"""Logging configuration for the attendance recognition pipeline."""
import logging
import sys
from typing import Dict, List

import structlog
from structlog.stdlib import ProcessorFormatter

from rollcall.core.config import settings

# Third-party loggers that are chatty at INFO during model loads and queries
QUIET_LOGGERS: Dict[str, int] = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "insightface": logging.WARNING,
    "onnxruntime": logging.WARNING,
}


def setup_logging() -> None:
    """Configure structured logging for the service.

    Development gets colored console output; every other environment gets one
    JSON object per line, with tracebacks rendered into an ``exception`` field.
    Standard-library loggers (uvicorn, SQLAlchemy) share the same handler.
    """
    shared_processors: List[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,  # request/session ids bound with bind_contextvars
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,  # must stay last
    ]

    if settings.ENVIRONMENT == "development":
        final_processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        final_processor = structlog.processors.JSONRenderer()
        # before wrap_for_formatter, so logger.exception() keeps its traceback
        shared_processors.insert(-1, structlog.processors.format_exc_info)

    structlog.configure(
        processors=shared_processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=final_processor))

    # Replace whatever handlers were installed before us (uvicorn, basicConfig)
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    logging.getLogger("uvicorn.error").propagate = False
    logging.getLogger("uvicorn.access").disabled = True  # one line per poll is noise
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    root_logger.info(
        f"Logging setup complete. Environment: {settings.ENVIRONMENT}, Level: {settings.LOG_LEVEL}"
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name``.

    Args:
        name: Name for the logger, typically __name__

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)
