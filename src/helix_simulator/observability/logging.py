"""Structured logging for the simulator.

Log entries are structlog key/value events. Every entry written while a
request is handled carries its ``request_id`` and, once the dispatcher has
selected one, the ``strain``.

Usage::

    from helix_simulator.observability.logging import configure_logging, get_logger

    configure_logging()  # once, from the CLI
    logger = get_logger(__name__)
    logger.info("static_resource_served", path="/index.html", status=200)

``LOG_FORMAT=json`` switches from console to JSON lines, ``LOG_LEVEL`` sets
the level.
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import IO

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
strain_ctx: ContextVar[str | None] = ContextVar("strain", default=None)

# Third-party loggers and the level they are capped at.
_LIBRARY_LEVELS: tuple[tuple[str, int], ...] = (
    ("uvicorn.access", logging.WARNING),
    ("uvicorn.error", logging.INFO),
    ("httpx", logging.WARNING),
    ("httpcore", logging.WARNING),
)

_configured = False


def _add_request_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Add request_id and strain of the request being handled."""
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    strain = strain_ctx.get()
    if strain is not None:
        event_dict.setdefault("strain", strain)
    return event_dict


def status_to_level(status: int) -> str:
    """Log level for an upstream response status."""
    if status < 300:
        return "debug"
    if status < 400:
        return "info"
    if status < 500:
        return "warning"
    return "error"


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Route structlog and stdlib logging through one handler.

    Args:
        level: Log level name. Defaults to ``LOG_LEVEL`` or INFO.
        json_output: Emit JSON lines instead of console output. Defaults to
            ``LOG_FORMAT == "json"``.
        stream: Output stream, stdout by default.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "console") == "json"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_request_context,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, cap in _LIBRARY_LEVELS:
        logging.getLogger(name).setLevel(max(cap, root.level))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)
