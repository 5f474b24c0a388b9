"""Structured logging for teamcal.

Every module logs through ``logging.getLogger(__name__)``; this module only
installs a structlog ``ProcessorFormatter`` on the root logger so those
records come out as colored console lines (``text``) or JSON lines
(``json``).  Each record carries the organization being synced and the
current OTel trace/span ids.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_org_context: ContextVar[str | None] = ContextVar("organization_id", default=None)

# Quieted to WARNING: per-request chatter from the HTTP stack.
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

LOG_FILE_NAME = "teamcal.log"


def set_org_context(organization_id: str | None) -> None:
    """Tag log records emitted from the current task with *organization_id*."""
    _org_context.set(organization_id)


def _add_sync_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    event_dict["organization_id"] = _org_context.get()
    ctx = trace.get_current_span().get_span_context()
    if ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt=time_fmt),
            _add_sync_context,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
) -> None:
    """Route all stdlib logging through structlog.

    Parameters
    ----------
    level:
        Root log level name.
    fmt:
        ``"text"`` for the console renderer, ``"json"`` for JSON lines.
    log_root:
        When set, records are also appended as JSON to
        ``{log_root}/teamcal.log``.
    """
    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), "%H:%M:%S")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(console)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_root / LOG_FILE_NAME)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
