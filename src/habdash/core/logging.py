"""Structured logging for habdash.

Call sites use plain ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders every record, either as colored console text or
as JSON lines.

Context travels through ``structlog.contextvars``: :func:`configure_logging`
binds the controller ``origin`` once, and control widgets bind ``item`` and
``command`` for the lifetime of a command task, so every gateway log line
emitted on its behalf names the item it serves. OTel trace ids are added
when a span is active (gateway requests always run in one).

With ``log_root`` set, JSON copies go to ``habdash.log`` and, for the
httpx/httpcore transport loggers only, ``http.log``.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace

# Loggers whose INFO chatter would drown out the dashboard's own events.
TRANSPORT_LOGGERS = ("httpx", "httpcore")

_CONSOLE_TIME_FMT = "%H:%M:%S"


def add_trace_ids(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Attach ``trace_id``/``span_id`` of the active OTel span, if there is one."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt, utc=time_fmt == "iso"),
        add_trace_ids,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_pre_chain(time_fmt),
    )


def _json_file(path: Path) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
    handler.setLevel(logging.DEBUG)
    return handler


def _detach_file_handlers(logger: logging.Logger) -> None:
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    origin: str | None = None,
) -> None:
    """(Re)configure process logging.

    Safe to call repeatedly: handlers installed by an earlier call are
    replaced, never duplicated.
    """
    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), _CONSOLE_TIME_FMT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(console)
    root.addHandler(stream)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    transport = [logging.getLogger(name) for name in TRANSPORT_LOGGERS]
    for logger in transport:
        logger.setLevel(logging.WARNING)
        _detach_file_handlers(logger)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_json_file(log_dir / "habdash.log"))
        http_log = _json_file(log_dir / "http.log")
        for logger in transport:
            logger.addHandler(http_log)

    structlog.contextvars.clear_contextvars()
    if origin:
        structlog.contextvars.bind_contextvars(origin=origin)

    structlog.configure(
        processors=[
            *_pre_chain("iso" if fmt == "json" else _CONSOLE_TIME_FMT),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
