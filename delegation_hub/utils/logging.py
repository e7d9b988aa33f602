"""Structured logging for the delegation hub.

Everything goes through structlog on top of the stdlib root logger, so
uvicorn and library output share one stream. Production renders JSON lines;
development renders through rich tracebacks.

Each log line can carry a correlation id (the HTTP request id, set by the
request middleware) in addition to whatever an adapter binds, typically
``execution_id``, ``task_id`` and ``agent_kind``.
"""

import logging
import sys
from contextvars import ContextVar
from functools import partialmethod
from typing import Any
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

SERVICE_NAME = "delegation-hub"

# Third-party loggers that only add noise below WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "watchfiles")

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Store ``correlation_id`` (or a fresh uuid4) for the current context."""
    value = correlation_id or uuid4().hex
    correlation_id_var.set(value)
    return value


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def add_hub_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp the service name and, when present, the correlation id."""
    event_dict.setdefault("service", SERVICE_NAME)
    correlation_id = correlation_id_var.get()
    if correlation_id is not None:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def _build_processors(json_format: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_hub_context,
        structlog.processors.StackInfoRenderer(),
    ]
    if not json_format:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.rich_traceback,
        )
        return [*processors, renderer]
    return [
        *processors,
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(sort_keys=True),
    ]


def _build_handlers(log_level: int, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(log_level)
    return handlers


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Level name; unknown names fall back to INFO
        json_format: Render JSON lines instead of the console format
        log_file: Also append every line to this file
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=_build_processors(json_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=_build_handlers(log_level, log_file),
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


class LoggerAdapter:
    """Named logger that repeats a fixed set of fields on every event.

    ``bind`` and ``unbind`` return new adapters; the original is never
    mutated, so a scheduler can hand a task-scoped copy to each worker.
    """

    def __init__(self, name: str | None = None, **context: Any):
        self._name = name
        self._context = context

    def bind(self, **fields: Any) -> "LoggerAdapter":
        return LoggerAdapter(self._name, **{**self._context, **fields})

    def unbind(self, *keys: str) -> "LoggerAdapter":
        kept = {key: value for key, value in self._context.items() if key not in keys}
        return LoggerAdapter(self._name, **kept)

    def _emit(self, method: str, event: str, **fields: Any) -> None:
        getattr(get_logger(self._name), method)(event, **{**self._context, **fields})

    debug = partialmethod(_emit, "debug")
    info = partialmethod(_emit, "info")
    warning = partialmethod(_emit, "warning")
    error = partialmethod(_emit, "error")
    exception = partialmethod(_emit, "exception")


def get_agent_logger(kind: str) -> LoggerAdapter:
    """Logger for the worker serving ``kind``."""
    return LoggerAdapter("agent", agent_kind=kind)


def get_execution_logger(execution_id: str, **context: Any) -> LoggerAdapter:
    """Logger for one delegation request; extra fields such as the requesting
    agent are bound alongside the execution id."""
    return LoggerAdapter("scheduler", execution_id=execution_id, **context)


def get_api_logger() -> LoggerAdapter:
    return LoggerAdapter("api")
