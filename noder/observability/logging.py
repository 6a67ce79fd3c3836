"""
Structured logging with run/node context attached automatically.

The executor sets the context once per run and once per node:

    WorkflowExecutor.run()        → set_trace_context(run_id=..., trigger=...)
        ↓ (ContextVar, follows awaits and asyncio tasks)
    WorkflowExecutor._run_node()  → set_trace_context(node_id=..., node_type=...)
        ↓
    provider clients / retry layer → logger.info(...) carries run_id + node_id
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, TextIO

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("noder_trace", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Attributes passed through ``extra=`` that are copied into JSON log lines.
EXTRA_FIELDS = (
    "event",
    "node_id",
    "model",
    "provider",
    "operation",
    "attempts",
    "status_code",
    "latency_ms",
    "prediction_id",
    "metadata",
)

LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
RESET = "\x1b[0m"

# Chatty HTTP client loggers; kept at WARNING in JSON mode
HTTP_LOGGERS = ("httpx", "httpcore")


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Carries timestamp, level, logger and message, the trace context
    (run_id, node_id, trigger, ...) and any EXTRA_FIELDS set on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **get_trace_context(),
        }
        entry.update(
            (name, value)
            for name in EXTRA_FIELDS
            if (value := getattr(record, name, None)) is not None
        )
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``[LEVEL   ] [run:abcd1234 | node:upscale] message [event]``"""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    @staticmethod
    def _prefix() -> str:
        context = get_trace_context()
        parts = []
        if context.get("run_id"):
            parts.append(f"run:{str(context['run_id'])[:8]}")
        if context.get("node_id"):
            parts.append(f"node:{context['node_id']}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        level = f"[{record.levelname:<8}]"
        if self.use_color:
            level = f"{LEVEL_COLORS.get(record.levelno, '')}{level}{RESET}"

        line = f"{level} {self._prefix()}{record.getMessage()}"
        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(
    level: str | int = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
    stream: TextIO | None = None,
) -> logging.Handler:
    """
    Install a single root handler for an application embedding noder.

    Args:
        level: Root log level
        format: "json" for one object per line, "human" for colourised
            lines, "auto" for JSON when LOG_FORMAT=json or ENV=production
        stream: Output stream (stderr by default)

    Returns:
        The installed handler
    """
    resolved = _resolve_format(format)
    handler = logging.StreamHandler(stream or sys.stderr)
    if resolved == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter(use_color="NO_COLOR" not in os.environ))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name in HTTP_LOGGERS:
        http_logger = logging.getLogger(name)
        http_logger.handlers.clear()
        http_logger.propagate = True
        http_logger.setLevel(logging.WARNING if resolved == "json" else logging.NOTSET)
    return handler


def set_trace_context(**fields: Any) -> None:
    """Merge fields (run_id, node_id, trigger, ...) into the current context."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    """Copy of the current context; empty when nothing was set."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
