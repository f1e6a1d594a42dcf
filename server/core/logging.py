"""Structured logging for the flow engine.

Engine code binds ``execution_id``, ``flow_id`` and ``node_id`` once per
job with ``bind_execution_context``; ``merge_contextvars`` then stamps them
on every line the task emits.
"""

import logging
import sys
from pathlib import Path

import structlog

from core.config import Settings


def _stdlib_handlers(settings: Settings) -> list:
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def _renderer_processors(settings: Settings) -> tuple:
    """(leading, trailing) processors for the configured output format."""
    if settings.log_format == "json":
        leading = [structlog.stdlib.add_logger_name, structlog.processors.TimeStamper(fmt="iso")]
        return leading, [structlog.processors.JSONRenderer()]

    console = structlog.dev.ConsoleRenderer(
        colors=False,
        pad_event=35,
        exception_formatter=structlog.dev.plain_traceback,
    )
    return [structlog.processors.TimeStamper(fmt="%H:%M:%S")], [console]


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging at ``settings.log_level``."""
    level = getattr(logging, settings.log_level.upper())
    handlers = _stdlib_handlers(settings)
    for handler in handlers:
        handler.setLevel(level)
    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)

    leading, trailing = _renderer_processors(settings)
    structlog.configure(
        processors=[
            *leading,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            *trailing,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_execution_context(**kwargs) -> None:
    """Attach execution identifiers to every log line of the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_execution_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_execution_time(logger: structlog.BoundLogger, operation: str,
                       start_time: float, end_time: float, **kwargs) -> None:
    logger.info(
        "Operation completed",
        operation=operation,
        execution_time_seconds=round(end_time - start_time, 4),
        **kwargs
    )


def log_cache_operation(logger: structlog.BoundLogger, operation: str,
                        key: str, hit: bool = None, **kwargs) -> None:
    if hit is not None:
        kwargs["cache_hit"] = hit
    logger.debug("Cache operation", operation=operation, cache_key=key, **kwargs)
