"""Per-node timing for the classification pipeline.

``@timed_node`` wraps a node function (sync or async) and, while a
``collect_metrics()`` context is active, appends a ``NodeMetrics`` entry
with its duration.  When the node returns a list, its length is recorded
as the number of lines processed.

    with collect_metrics() as metrics:
        lines = line_classifier.classify_lines(raw_lines)
        lines = await external_review.review_lines(lines)
    report = build_report(metrics)
"""

from __future__ import annotations

import contextvars
import functools
import inspect
import logging
import time

from .models import NodeMetrics

log = logging.getLogger(__name__)

_active: contextvars.ContextVar[list[NodeMetrics] | None] = (
    contextvars.ContextVar("_active_metrics", default=None)
)


class collect_metrics:
    """Activate metric collection for ``@timed_node`` functions."""

    def __enter__(self) -> list[NodeMetrics]:
        self._metrics: list[NodeMetrics] = []
        self._token = _active.set(self._metrics)
        return self._metrics

    def __exit__(self, *exc) -> None:
        _active.reset(self._token)


def timed_node(name: str, node_type: str):
    """Record the duration of a node; a no-op outside ``collect_metrics``."""

    def decorator(fn):
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                t0 = time.monotonic_ns()
                result = await fn(*args, **kwargs)
                _record(name, node_type, t0, result)
                return result

        else:

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                t0 = time.monotonic_ns()
                result = fn(*args, **kwargs)
                _record(name, node_type, t0, result)
                return result

        return wrapper

    return decorator


def _record(name: str, node_type: str, t0: int, result) -> None:
    duration_ms = (time.monotonic_ns() - t0) // 1_000_000
    log.debug("%s: %d ms", name, duration_ms)
    metrics = _active.get()
    if metrics is None:
        return
    processed = len(result) if isinstance(result, list) else 0
    metrics.append(NodeMetrics(name, node_type, duration_ms, lines_processed=processed))


def build_report(metrics: list[NodeMetrics]) -> dict:
    total_ms = sum(m.duration_ms for m in metrics)
    ai_ms = sum(m.duration_ms for m in metrics if m.node_type == "ai")
    return {
        "total_duration_ms": total_ms,
        "programmatic_duration_ms": total_ms - ai_ms,
        "ai_duration_ms": ai_ms,
        "nodes": [
            {
                "node": m.node_name,
                "type": m.node_type,
                "duration_ms": m.duration_ms,
                "lines_processed": m.lines_processed,
                "lines_affected": m.lines_affected,
            }
            for m in metrics
        ],
    }
