"""
Structured logging for the archive engine with trace ID support.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for trace ID propagation
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)

# Global logger cache
_loggers: dict[str, "StructuredLogger"] = {}

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)


class StructuredFormatter(logging.Formatter):
    """Single-line `key=value` formatter carrying the current trace ID."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = trace_id_ctx.get() or getattr(record, "trace_id", None) or "-"

        parts = record.name.split(".")
        mod = parts[-1] if parts else record.name
        op = getattr(record, "op", getattr(record, "funcName", "-"))

        duration = getattr(record, "ms", None)
        ms_part = f" ms={duration:.1f}" if duration is not None else ""

        timestamp = datetime.now(UTC).isoformat()
        msg = record.getMessage()

        extra_fields = ""
        for key, value in getattr(record, "__dict__", {}).items():
            if key in _RESERVED_ATTRS or key in {"trace_id", "op", "ms"}:
                continue
            extra_fields += f" {key}={value}"

        line = (
            f"t={timestamp} level={record.levelname} trace={trace_id} "
            f'mod={mod} op={op}{ms_part} msg="{msg}"{extra_fields}'
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Structured logger with trace ID and operation support."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info=None, **kwargs):
        # LogRecord refuses extras that shadow its own attributes
        extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Transport libraries are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in current context."""
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    """Get current trace ID from context."""
    return trace_id_ctx.get()


def clear_trace_id() -> None:
    """Clear trace ID from current context."""
    trace_id_ctx.set(None)
