"""Periodic sync trigger.

Each pass selects the repositories that are due, makes one conditional
commit lookup per repository and enqueues a ``repository`` message only for
those whose branch head moved. Checks run in bounded concurrent groups under
a soft wall-clock deadline; a pass that runs out of time stops between
groups and leaves the rest for the next tick.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from reposync.common.time import utcnow
from reposync.concurrency import BoundedTaskGroup
from reposync.context import RunContext
from reposync.errors import classify_error
from reposync.logging import log_info, log_warning
from reposync.queue.messages import IngestMessage

if typ.TYPE_CHECKING:
    from reposync.factory import IngestorDependencies
    from reposync.state.service import TrackedRepository


class CheckStatus(enum.StrEnum):
    """Result of checking one due repository."""

    ENQUEUED = "enqueued"
    UNCHANGED = "unchanged"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"


@dc.dataclass(frozen=True, slots=True)
class SchedulerResult:
    """Counts from one scheduler pass."""

    candidates: int = 0
    checked: int = 0
    enqueued: int = 0
    unchanged: int = 0
    in_flight: int = 0
    failed: int = 0
    deadline_exceeded: bool = False


async def _check_repository(
    repository: TrackedRepository,
    deps: IngestorDependencies,
    ctx: RunContext,
) -> CheckStatus:
    """Check one repository, recording any failure against its state."""
    try:
        token = await deps.tokens.resolve(repository)
        ingestor = deps.ingestor_factory(
            repository.provider,
            repository,
            token=token,
            content=deps.content,
            state=deps.state,
            api_url=deps.config.github_api_url,
            http_client=deps.http_client,
            metrics=deps.metrics,
        )
        try:
            head = await ingestor.latest_commit()
        finally:
            await ingestor.aclose()
    except Exception as exc:  # noqa: BLE001 - failures are recorded on the row
        await _record_check_failure(repository, exc, deps, ctx)
        return CheckStatus.FAILED

    if head is None:
        await deps.state.record_success(repository.id)
        return CheckStatus.UNCHANGED
    if head.sha == repository.last_commit_sha:
        await deps.state.record_success(repository.id, etag=head.etag)
        return CheckStatus.UNCHANGED
    if head.sha == repository.queued_commit_sha and repository.retry_count == 0:
        return CheckStatus.IN_FLIGHT

    await deps.ingest_queue.send(IngestMessage.for_repository(repository))
    await deps.state.mark_queued(repository.id, head.sha)
    log_info(
        ctx.logger,
        "Enqueued %s at %s (cursor %s)",
        repository.slug,
        head.sha,
        repository.last_commit_sha,
    )
    return CheckStatus.ENQUEUED


async def _record_check_failure(
    repository: TrackedRepository,
    exc: Exception,
    deps: IngestorDependencies,
    ctx: RunContext,
) -> None:
    classification = classify_error(exc)
    if classification.is_rate_limit:
        await deps.state.record_rate_limit(
            repository.id, classification.rate_limit_reset
        )
    else:
        await deps.state.record_failure(
            repository.id, str(exc), is_transient=classification.is_transient
        )
    log_warning(
        ctx.logger,
        "Scheduled check failed for %s: %s",
        repository.slug,
        exc,
    )


async def run_scheduled_sync(
    deps: IngestorDependencies,
    *,
    context: RunContext | None = None,
    limit: int | None = None,
    provider: str | None = None,
) -> SchedulerResult:
    """Run one scheduler pass.

    Parameters
    ----------
    deps
        Stores, resolvers and the ingest queue.
    context
        Run context; when omitted one is created with the configured
        scheduler deadline.
    limit
        Cap on due repositories checked; defaults to the configured limit.
    provider
        Restrict the pass to one provider.

    Returns
    -------
    SchedulerResult
        Counts of the pass and whether it stopped at the deadline.

    """
    ctx = context or RunContext.create(
        "scheduler",
        timeout_s=deps.config.scheduler_deadline_seconds,
        metrics=deps.metrics,
    )
    started_at = utcnow()
    due = await deps.state.get_due(
        limit=limit or deps.config.scheduler_limit, provider=provider
    )

    async def check(repository: TrackedRepository) -> CheckStatus:
        return await _check_repository(repository, deps, ctx)

    group = BoundedTaskGroup(deps.config.concurrency, context=ctx)
    run = await group.run(due, check)

    statuses = [
        outcome.result if outcome.ok else CheckStatus.FAILED
        for outcome in run.outcomes
    ]
    for outcome in run.failed:
        log_warning(
            ctx.logger,
            "Could not record scheduled check for %s: %s",
            outcome.item.slug,
            outcome.error,
        )

    result = SchedulerResult(
        candidates=len(due),
        checked=len(run.outcomes),
        enqueued=statuses.count(CheckStatus.ENQUEUED),
        unchanged=statuses.count(CheckStatus.UNCHANGED),
        in_flight=statuses.count(CheckStatus.IN_FLIGHT),
        failed=statuses.count(CheckStatus.FAILED),
        deadline_exceeded=run.deadline_exceeded,
    )
    if result.deadline_exceeded:
        deps.events.log_scheduler_deadline(
            checked=result.checked, candidates=result.candidates
        )
    deps.events.log_scheduler_completed(
        candidates=result.candidates,
        checked=result.checked,
        enqueued=result.enqueued,
        unchanged=result.unchanged,
        failed=result.failed,
        duration=utcnow() - started_at,
    )
    ctx.metrics.increment("scheduler.enqueued", result.enqueued)
    ctx.metrics.increment("scheduler.failed", result.failed)
    return result


__all__ = ["CheckStatus", "SchedulerResult", "run_scheduled_sync"]
