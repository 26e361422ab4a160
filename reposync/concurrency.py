"""Bounded fan-out in fixed-size groups with deadline polling.

Work items are processed ``width`` at a time with
``asyncio.gather(..., return_exceptions=True)`` so one failing item never
cancels its siblings. Between groups the runner yields to the event loop
and polls the run context; once the context has expired the remaining items
are returned unattempted.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.context import RunContext

DEFAULT_GROUP_WIDTH = 5


@dc.dataclass(frozen=True, slots=True)
class TaskOutcome[T, R]:
    """Result of running one item: either ``result`` or ``error`` is set."""

    item: T
    result: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Return True when the item completed without raising."""
        return self.error is None


@dc.dataclass(slots=True)
class GroupRunResult[T, R]:
    """Outcomes of a bounded run plus any items left unattempted."""

    outcomes: list[TaskOutcome[T, R]] = dc.field(default_factory=list)
    pending: list[T] = dc.field(default_factory=list)

    @property
    def deadline_exceeded(self) -> bool:
        """Return True when the run stopped before attempting every item."""
        return bool(self.pending)

    @property
    def succeeded(self) -> list[TaskOutcome[T, R]]:
        """Return outcomes that completed without error."""
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[TaskOutcome[T, R]]:
        """Return outcomes that raised."""
        return [outcome for outcome in self.outcomes if not outcome.ok]


def _collect_group[T, R](
    items: cabc.Sequence[T],
    gathered: list[R | BaseException],
) -> list[TaskOutcome[T, R]]:
    outcomes: list[TaskOutcome[T, R]] = []
    for item, result in zip(items, gathered, strict=True):
        if isinstance(result, Exception):
            outcomes.append(TaskOutcome(item=item, error=result))
        elif isinstance(result, BaseException):
            # Re-raise system-level exceptions (e.g., KeyboardInterrupt) immediately
            raise result
        else:
            outcomes.append(TaskOutcome(item=item, result=result))
    return outcomes


class BoundedTaskGroup:
    """Run an async callable over items in fixed-size concurrent groups.

    Parameters
    ----------
    width
        Number of items in flight at once. Must be positive.
    context
        Optional run context; when it expires between groups the run stops
        and the unattempted items are reported as pending.

    """

    def __init__(
        self,
        width: int = DEFAULT_GROUP_WIDTH,
        *,
        context: RunContext | None = None,
    ) -> None:
        """Validate the group width and store the run context."""
        if width < 1:
            msg = f"width must be positive, got {width}"
            raise ValueError(msg)
        self._width = width
        self._context = context

    @property
    def width(self) -> int:
        """Return the configured group width."""
        return self._width

    async def run[T, R](
        self,
        items: cabc.Sequence[T],
        fn: cabc.Callable[[T], cabc.Awaitable[R]],
    ) -> GroupRunResult[T, R]:
        """Apply ``fn`` to every item, ``width`` items at a time.

        Returns
        -------
        GroupRunResult
            One outcome per attempted item, in input order, plus the items
            skipped because the context expired.

        """
        result: GroupRunResult[T, R] = GroupRunResult()
        for start in range(0, len(items), self._width):
            if start:
                await asyncio.sleep(0)
            if self._context is not None and self._context.expired:
                result.pending.extend(items[start:])
                break
            group = items[start : start + self._width]
            gathered = await asyncio.gather(
                *(fn(item) for item in group), return_exceptions=True
            )
            result.outcomes.extend(_collect_group(group, gathered))
        return result


__all__ = ["DEFAULT_GROUP_WIDTH", "BoundedTaskGroup", "GroupRunResult", "TaskOutcome"]
