"""Structured logging configuration using structlog with async context propagation."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Chatty third-party loggers capped at WARNING (one line per upstream request otherwise)
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Uses structlog.contextvars so request-scoped fields (method, path) bound
    by the API middleware follow the request across awaits.

    Args:
        log_level: Root log level name.
        log_format: "json" for machine-readable output, "console" otherwise.
            Falls back to the LOG_FORMAT environment variable.
    """
    if log_format is None:
        log_format = os.environ.get("LOG_FORMAT", "console")
    log_format = log_format.lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bind_request_context(**fields: object) -> Iterator[None]:
    """Bind fields into the structlog contextvars for the duration of a block."""
    tokens = structlog.contextvars.bind_contextvars(**fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
