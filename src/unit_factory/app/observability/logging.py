"""Structured logging configuration for the unit factory.

Engine modules log through stdlib ``logging.getLogger(__name__)``. This module
routes those records through structlog so each line comes out as JSON (or
console output locally), carrying the ``operation_id`` of the factory call
that produced it.

Usage::

    from unit_factory.app.observability.logging import configure_logging

    configure_logging()  # once, at process start
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

import structlog

# Correlates every log line emitted while one factory operation runs.
operation_id_ctx: ContextVar[str | None] = ContextVar("operation_id", default=None)

_configured = False


def _add_operation_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    oid = operation_id_ctx.get()
    if oid is not None:
        event_dict.setdefault("operation_id", oid)
    return event_dict


@contextmanager
def bind_operation(name: str, operation_id: str | None = None) -> Iterator[str]:
    """Scope an operation id (generated if omitted) over a block."""
    oid = operation_id or uuid.uuid4().hex
    token = operation_id_ctx.set(oid)
    bound = structlog.contextvars.bind_contextvars(operation=name)
    try:
        yield oid
    finally:
        structlog.contextvars.reset_contextvars(**bound)
        operation_id_ctx.reset(token)


def shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _add_operation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    stream=None,
    force: bool = False,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level: Log level name. Defaults to LOG_LEVEL env var or INFO.
        json_output: Emit JSON lines when True, console output when False.
            Defaults to LOG_FORMAT env var == "json".
        stream: Destination stream, stdout by default.
        force: Reconfigure even if already configured (tests).
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    processors = shared_processors()
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # Records from plain stdlib loggers get the same enrichment.
        foreign_pre_chain=processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
