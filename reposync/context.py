"""Per-invocation context carrying the logger, metrics sink and deadline.

Every entrypoint (webhook, scheduled sync, queue batch) builds one
``RunContext`` and threads it through the call graph instead of relying on
module-level singletons.

Usage
-----
Bound a scheduler pass to a 30 second soft deadline:

>>> ctx = RunContext.create("scheduler", timeout_s=30.0)
>>> ctx.expired
False

"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import time
import typing as typ

from reposync.errors import DeadlineExceededError
from reposync.logging import get_logger
from reposync.metrics import LoggingMetricsSink

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.logging import SupportsLog
    from reposync.metrics import MetricsSink

_LOGGER_ROOT = "reposync"


@dc.dataclass(slots=True)
class RunContext:
    """Scoped logger, metrics sink and cancellation signal for one run.

    Attributes
    ----------
    operation
        Short name of the invocation, used for logger scoping and tags.
    logger
        femtologging logger scoped to the operation.
    metrics
        Sink receiving counters, gauges and timings.
    deadline
        Monotonic clock reading after which the run should stop taking on
        new work, or ``None`` for no deadline.
    clock
        Monotonic clock; injectable so tests can advance time.

    """

    operation: str
    logger: SupportsLog
    metrics: MetricsSink
    deadline: float | None = None
    clock: cabc.Callable[[], float] = time.monotonic
    _cancelled: bool = dc.field(default=False, repr=False)

    @classmethod
    def create(
        cls,
        operation: str,
        *,
        timeout_s: float | None = None,
        metrics: MetricsSink | None = None,
        clock: cabc.Callable[[], float] = time.monotonic,
    ) -> RunContext:
        """Build a context whose deadline is ``timeout_s`` from now."""
        deadline = None if timeout_s is None else clock() + timeout_s
        return cls(
            operation=operation,
            logger=get_logger(f"{_LOGGER_ROOT}.{operation}"),
            metrics=metrics or LoggingMetricsSink(),
            deadline=deadline,
            clock=clock,
        )

    def child(self, operation: str) -> RunContext:
        """Return a context sharing this run's deadline, metrics and clock."""
        child = RunContext(
            operation=operation,
            logger=get_logger(f"{_LOGGER_ROOT}.{operation}"),
            metrics=self.metrics,
            deadline=self.deadline,
            clock=self.clock,
        )
        child._cancelled = self._cancelled
        return child

    def remaining(self) -> float | None:
        """Return seconds left before the deadline, or ``None`` if unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())

    def cancel(self) -> None:
        """Signal that no further work should be started."""
        self._cancelled = True

    @property
    def expired(self) -> bool:
        """Return True once cancelled or past the deadline."""
        if self._cancelled:
            return True
        return self.deadline is not None and self.clock() >= self.deadline

    def check(self) -> None:
        """Raise ``DeadlineExceededError`` when the run has expired."""
        if self.expired:
            msg = f"{self.operation} exceeded its soft deadline"
            raise DeadlineExceededError(msg)

    @contextlib.contextmanager
    def timed(self, name: str, **tags: object) -> typ.Iterator[None]:
        """Record the wall-clock duration of the block as a timing metric."""
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.metrics.timing(name, elapsed_ms, **tags)


__all__ = ["RunContext"]
