"""Metrics sinks threaded through each invocation via the run context.

Metrics are emitted as structured log lines by default so log aggregators can
derive counters without a metrics backend. ``InMemoryMetricsSink`` keeps the
values in process for tests and the ``/status`` endpoint.
"""

from __future__ import annotations

import collections
import logging
import threading
import typing as typ

logger = logging.getLogger(__name__)

_METRIC_PREFIX = "reposync"


def _format_tags(tags: typ.Mapping[str, object]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(tags.items()))


@typ.runtime_checkable
class MetricsSink(typ.Protocol):
    """Port for counters, gauges and timings."""

    def increment(self, name: str, value: int = 1, **tags: object) -> None:
        """Increment counter ``name`` by ``value``."""
        ...

    def gauge(self, name: str, value: float, **tags: object) -> None:
        """Record the current value of gauge ``name``."""
        ...

    def timing(self, name: str, milliseconds: float, **tags: object) -> None:
        """Record a duration for ``name`` in milliseconds."""
        ...


class LoggingMetricsSink:
    """Emit each metric as a ``[metric]`` log line."""

    def increment(self, name: str, value: int = 1, **tags: object) -> None:
        """Log a counter increment."""
        logger.info(
            "[metric] kind=counter name=%s.%s value=%d %s",
            _METRIC_PREFIX,
            name,
            value,
            _format_tags(tags),
        )

    def gauge(self, name: str, value: float, **tags: object) -> None:
        """Log a gauge reading."""
        logger.info(
            "[metric] kind=gauge name=%s.%s value=%s %s",
            _METRIC_PREFIX,
            name,
            value,
            _format_tags(tags),
        )

    def timing(self, name: str, milliseconds: float, **tags: object) -> None:
        """Log a timing."""
        logger.info(
            "[metric] kind=timing name=%s.%s value_ms=%.3f %s",
            _METRIC_PREFIX,
            name,
            milliseconds,
            _format_tags(tags),
        )


class InMemoryMetricsSink:
    """Accumulate metrics in memory; tags are ignored for aggregation."""

    def __init__(self) -> None:
        """Initialise empty counters, gauges and timing lists."""
        self._lock = threading.Lock()
        self.counters: collections.Counter[str] = collections.Counter()
        self.gauges: dict[str, float] = {}
        self.timings: dict[str, list[float]] = collections.defaultdict(list)

    def increment(self, name: str, value: int = 1, **tags: object) -> None:
        """Add ``value`` to the named counter."""
        del tags
        with self._lock:
            self.counters[name] += value

    def gauge(self, name: str, value: float, **tags: object) -> None:
        """Store the latest gauge value."""
        del tags
        with self._lock:
            self.gauges[name] = value

    def timing(self, name: str, milliseconds: float, **tags: object) -> None:
        """Append a timing sample."""
        del tags
        with self._lock:
            self.timings[name].append(milliseconds)

    def counter(self, name: str) -> int:
        """Return the current value of a counter (zero when unseen)."""
        with self._lock:
            return self.counters[name]

    def snapshot(self) -> dict[str, int]:
        """Return a copy of all counters."""
        with self._lock:
            return dict(self.counters)


__all__ = ["InMemoryMetricsSink", "LoggingMetricsSink", "MetricsSink"]
