"""
Structured logging for the coordinator and its worker processes.

Every module obtains its logger with ``get_logger(__name__)`` and emits
dotted event names with key/value fields::

    logger.info("scheduler.target_built", target="model", elapsed=1.2)

Manifesto:
    Build logs get grepped, diffed and shipped to CI artifacts, so an event
    is a name plus fields, never a formatted sentence.

    - **One switch:** :func:`configure_logging` is called by the CLI (or
      by the user); library code only asks for loggers
    - **Correlated:** :class:`LogContext` binds ``run_id``, ``target`` and
      ``worker``, and every event inside the block carries them
    - **Fork-safe:** workers inherit the configuration; their events carry
      the ``worker`` field so interleaved lines can be told apart

Architecture:
    ::

        configure_logging(level, json_format, stream)
          │
          ├─ structlog chain:
          │     filter_by_level → merge_contextvars → drop unset fields
          │     → level, logger name, service, timestamp
          │     → JSONRenderer (pipes, CI) | ConsoleRenderer (terminals)
          └─ stdlib root handler on ``stream`` (stderr by default)

Examples:
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(run_id="abc123"):
    ...     logger.info("scheduler.run_started", targets=3)

Tags:
    logging, structlog, observability, remake

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "remake"


def _tag_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", _service)
    return event_dict


def _drop_unset(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    # LogContext(run_id=None) outside a run binds nothing useful
    return {key: value for key, value in event_dict.items() if value is not None}


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "remake",
    add_timestamp: bool = True,
    stream: Any = None,
) -> None:
    """
    Route remake's events to ``stream`` at ``level``.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        json_format: JSON lines if True, console lines if False; None picks
            JSON unless ``stream`` is a terminal.
        service: Value of the ``service`` field on every event.
        add_timestamp: Prefix events with an ISO timestamp.
        stream: Where lines go. Defaults to stderr, keeping stdout for
            command results such as ``remake show``.
    """
    global _service
    _service = service
    stream = stream or sys.stderr
    tty = stream.isatty()
    if json_format is None:
        json_format = not tty

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        _drop_unset,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _tag_service,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=tty))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib handlers carry the stream, so reconfiguring redirects every logger
    numeric = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=stream, level=numeric, force=True)
    logging.getLogger("remake").setLevel(numeric)


def get_logger(name: str | None = None) -> Any:
    """A structlog logger named ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)


class LogContext:
    """
    Bind fields to every event emitted inside the block.

    Nested blocks override outer values and restore them on exit::

        with LogContext(run_id=run_id):
            with LogContext(target="model", worker="loop"):
                logger.info("builder.succeeded")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._bound: Any = None

    def __enter__(self) -> LogContext:
        self._bound = structlog.contextvars.bound_contextvars(**self._fields)
        self._bound.__enter__()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._bound.__exit__(*exc)


__all__ = ["configure_logging", "get_logger", "LogContext"]
