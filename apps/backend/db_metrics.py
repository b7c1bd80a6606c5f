"""
db_metrics.py

Query-timing helpers for the read-only warehouse layer.

Goals
-----
- Keep instrumentation lightweight and dependency-free.
- Emit slow-query warnings with stable, machine-parseable fields.
- Provide an optional histogram emitter hook for Prometheus/Datadog adapters.
  Nothing in this repository registers one: a deployment that ships metrics
  calls ``register_histogram_emitter`` at startup. Without it the hook is a
  no-op and only slow-query warnings are produced.

A streamed query is timed from ``execute`` until the last row has been
consumed, so the measurement covers the full transfer of a snapshot table.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)
_HISTOGRAM_NAME = "warehouse_query_duration_ms"
_METRIC_EMITTER: Callable[[str, float, Sequence[str]], None] | None = None


def query_metrics_enabled() -> bool:
    """Return whether query instrumentation is enabled."""
    return get_settings().db_metrics.metrics_enabled


def slow_query_threshold_ms() -> float:
    """Return the slow-query warning threshold in milliseconds."""
    return get_settings().db_metrics.slow_query_threshold_ms


def register_histogram_emitter(emitter: Callable[[str, float, Sequence[str]], None] | None) -> None:
    """Register a histogram emitter callback.

    The callback receives:
    - metric_name
    - observed value (milliseconds)
    - tags (e.g. ["query:stream:approved_projects"])
    """
    global _METRIC_EMITTER
    _METRIC_EMITTER = emitter


def _emit_histogram(name: str, value: float, tags: Sequence[str]) -> None:
    """Emit histogram metric if a callback is registered."""
    if _METRIC_EMITTER is None:
        return
    try:
        _METRIC_EMITTER(name, value, tags)
    except (TypeError, ValueError, RuntimeError) as exc:
        _LOGGER.debug("warehouse metric emitter failed: %s", exc)


@contextmanager
def measure_query(name: str) -> Iterator[None]:
    """Measure query duration, warn on slow queries, and emit histogram data."""
    if not query_metrics_enabled():
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        rounded_ms = round(duration_ms, 2)
        if duration_ms >= slow_query_threshold_ms():
            _LOGGER.warning("slow_query query_name=%s duration_ms=%.2f", str(name), rounded_ms)
        _emit_histogram(_HISTOGRAM_NAME, rounded_ms, [f"query:{name}"])
