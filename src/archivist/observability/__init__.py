"""
Observability for the archive engine.

Structured single-line logs with a trace ID carried in a context variable,
plus timing probes backed by OpenTelemetry spans.

    >>> from archivist.observability import get_logger, probe
    >>> logger = get_logger(__name__)
    >>> with probe("index.search", mode="keyword"):
    ...     logger.info("Searching", query_length=12)

Environment:
    - ARCHIVIST_OBSERVABILITY__LOG_LEVEL=INFO
"""

from .logging import clear_trace_id, get_logger, get_trace_id, set_trace_id, setup_logging
from .probe import clear_trace_metrics, get_trace_metrics, probe

__all__ = [
    "get_logger",
    "setup_logging",
    "set_trace_id",
    "get_trace_id",
    "clear_trace_id",
    "probe",
    "get_trace_metrics",
    "clear_trace_metrics",
]
