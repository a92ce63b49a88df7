"""Structured logging for the oracle monitor, built on structlog.

Every component logs snake_case events with keyword context. Detection and
collection cycles bind a ``cycle_id`` through structlog.contextvars so all
per-symbol events emitted by concurrent tasks carry the cycle they belong to.
"""

import logging
import os

import structlog

# Chatty third-party loggers that would drown cycle summaries at DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "ccxt", "uvicorn.access")


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Rendering is JSON when ``log_format`` (or the LOG_FORMAT environment
    variable) is "json", otherwise the console renderer is used.
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

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


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


def bind_cycle(cycle_id: str, **extra: object) -> None:
    """Bind cycle-scoped context for every log event in the current task tree."""
    structlog.contextvars.bind_contextvars(cycle_id=cycle_id, **extra)


def clear_cycle() -> None:
    """Drop cycle-scoped context bound by :func:`bind_cycle`."""
    structlog.contextvars.clear_contextvars()
