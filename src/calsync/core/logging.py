"""Structured logging for calsync.

Module code keeps using ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` renders those records. Console output is either
colored text (the default) or JSON lines, and an optional log file always
receives JSON.

Records emitted while a user's calendars sync carry ``user_id``, and records
emitted under an active OTel span carry ``trace_id`` and ``span_id``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import structlog
from opentelemetry import trace

EventDict = MutableMapping[str, Any]

_current_user: ContextVar[str | None] = ContextVar("calsync_user_id", default=None)

# Client libraries that log every request at INFO.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncpg",
    "alembic.runtime.migration",
)


@contextmanager
def bind_sync_user(user_id: object) -> Iterator[None]:
    """Tag records logged inside the block with ``user_id``."""
    token = _current_user.set(str(user_id))
    try:
        yield
    finally:
        _current_user.reset(token)


def get_sync_user() -> str | None:
    return _current_user.get()


def add_sync_user(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    user_id = _current_user.get()
    if user_id is not None:
        event_dict["user_id"] = user_id
    return event_dict


def add_otel_context(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    context = trace.get_current_span().get_span_context()
    if context is not None and context.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(context.trace_id)
        event_dict["span_id"] = trace.format_span_id(context.span_id)
    return event_dict


def _shared_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=True),
        add_sync_user,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Path | str | None = None,
) -> None:
    """Install calsync's handlers on the root logger, replacing any present.

    Parameters
    ----------
    level:
        Root level name; unknown names fall back to INFO.
    fmt:
        ``"json"`` for JSON lines on stderr; anything else gives colored text.
    log_file:
        If given, JSON lines are appended here as well. Parent directories
        are created.
    """
    json_chain = _shared_chain("iso")
    if fmt == "json":
        console_chain = json_chain
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        console_chain = _shared_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, console_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), json_chain)
        )
        root.addHandler(file_handler)

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*console_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
