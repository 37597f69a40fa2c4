"""
Timing probes for engine operations.

Every probe logs one structured line, opens an OpenTelemetry span and keeps
per-trace timings in memory so a caller can inspect what a single query cost.
"""

import contextlib
import time
from typing import Any

from opentelemetry import trace

from .logging import get_logger, get_trace_id

log = get_logger("archivist.probe")
tracer = trace.get_tracer("archivist")

# Per-trace timings, keyed by trace id then operation name
_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, trace_id: str | None = None, **labels):
    """
    Time a block of work.

    Args:
        op: Operation name (e.g., "index.search")
        trace_id: Trace ID for correlation, defaults to the context trace ID
        **labels: Additional labels attached to the log line and span
    """
    trace_id = trace_id or get_trace_id()
    start_time = time.perf_counter()
    ok = True
    error_type = None

    with tracer.start_as_current_span(op) as span:
        for key, value in labels.items():
            span.set_attribute(f"archivist.{key}", str(value))
        try:
            yield
        except BaseException as e:
            ok = False
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            log.debug(
                f"op={op} ok={str(ok).lower()}"
                + (f" error={error_type}" if error_type else "")
                + "".join(f" {k}={v}" for k, v in labels.items()),
                ms=duration_ms,
            )

            if trace_id:
                _METRICS_STORE.setdefault(trace_id, {})[op] = {
                    "duration_ms": duration_ms,
                    "success": ok,
                    "error_type": error_type,
                    "labels": labels,
                    "timestamp": time.time(),
                }


def get_trace_metrics(trace_id: str) -> dict[str, Any]:
    """Get all metrics for a specific trace ID."""
    return _METRICS_STORE.get(trace_id, {})


def clear_trace_metrics(trace_id: str | None = None) -> None:
    """Clear metrics for one trace ID, or all of them."""
    if trace_id is None:
        _METRICS_STORE.clear()
    else:
        _METRICS_STORE.pop(trace_id, None)
