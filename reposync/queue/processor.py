"""Process batches of ingest messages.

Each message is decoded and validated, then either a whole repository or a
single file is synced. Per-file failures are isolated and counted; message
failures are classified once and routed to the retry schedule, the
rate-limit gate and the dead-letter queue.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from reposync.common.time import utcnow
from reposync.concurrency import BoundedTaskGroup
from reposync.content.utils import get_mime_type, is_binary_content
from reposync.context import RunContext
from reposync.errors import (
    DeadlineExceededError,
    MessageValidationError,
    StoreError,
    classify_error,
)
from reposync.ingestors.models import ChangedItem
from reposync.logging import log_info, log_warning
from reposync.observability import SyncRunContext, categorize_error
from reposync.queue.messages import (
    DeadLetterMessage,
    IngestMessage,
    MessageType,
    decode_message,
    payload_as_mapping,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.factory import IngestorDependencies
    from reposync.ingestors.protocol import SourceIngestor
    from reposync.state.service import TrackedRepository


class MessageStatus(enum.StrEnum):
    """Final state of one message in a batch."""

    COMPLETED = "completed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ItemStatus(enum.StrEnum):
    """Result of handling one candidate file."""

    STORED = "stored"
    SKIPPED = "skipped"


@dc.dataclass(slots=True)
class MessageOutcome:
    """What happened to one message."""

    status: MessageStatus
    repo_id: str | None = None
    message_type: str | None = None
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None
    dead_lettered: bool = False


@dc.dataclass(slots=True)
class BatchResult:
    """Per-message outcomes of one :func:`process_queue_batch` call."""

    outcomes: list[MessageOutcome] = dc.field(default_factory=list)

    @property
    def processed(self) -> int:
        """Return the number of files stored across the batch."""
        return sum(o.stored for o in self.outcomes)

    @property
    def skipped(self) -> int:
        """Return the number of unchanged or binary files skipped."""
        return sum(o.skipped for o in self.outcomes)

    @property
    def failed(self) -> int:
        """Return the number of per-file failures across the batch."""
        return sum(o.failed for o in self.outcomes)

    @property
    def dead_lettered(self) -> list[MessageOutcome]:
        """Return the outcomes whose message was sent to the dead-letter queue."""
        return [o for o in self.outcomes if o.dead_lettered]


@dc.dataclass(frozen=True, slots=True)
class _ItemCounts:
    stored: int
    skipped: int
    failed: int


async def process_queue_batch(
    payloads: cabc.Sequence[object],
    deps: IngestorDependencies,
    *,
    context: RunContext | None = None,
) -> BatchResult:
    """Process a batch of raw ingest payloads.

    Parameters
    ----------
    payloads
        Raw messages: JSON bytes or text, camelCase mappings, or decoded
        :class:`IngestMessage` values.
    deps
        Stores, resolvers and queues shared by the run.
    context
        Run context; a fresh one bounded by the queue soft deadline is
        created when omitted.

    Returns
    -------
    BatchResult
        One outcome per payload, in order.

    """
    ctx = context or RunContext.create(
        "queue",
        timeout_s=deps.config.queue_deadline_seconds,
        metrics=deps.metrics,
    )
    ctx.metrics.gauge("queue.batch_size", len(payloads))
    log_info(ctx.logger, "Processing ingest queue batch of %d", len(payloads))

    result = BatchResult()
    with ctx.timed("queue.batch.process_time_ms"):
        for payload in payloads:
            outcome = await _process_payload(payload, deps, ctx)
            result.outcomes.append(outcome)
            if outcome.status is MessageStatus.FAILED:
                ctx.metrics.increment("queue.message.error")
            else:
                ctx.metrics.increment("queue.message.success")
    return result


async def _process_payload(
    payload: object, deps: IngestorDependencies, ctx: RunContext
) -> MessageOutcome:
    try:
        message = decode_message(payload)
    except MessageValidationError as exc:
        original = payload_as_mapping(payload)
        repo_id = original.get("repoId")
        await _dead_letter(deps, original, exc, attempts=1, repo_id=repo_id)
        return MessageOutcome(
            status=MessageStatus.FAILED,
            repo_id=repo_id if isinstance(repo_id, str) else None,
            message_type=None,
            error=str(exc),
            dead_lettered=True,
        )

    try:
        if message.type == MessageType.FILE:
            return await _process_file_message(message, deps, ctx)
        return await _process_repository_message(message, deps, ctx)
    except Exception as exc:  # noqa: BLE001 - every failure is routed below
        return await _handle_message_failure(message, exc, deps)


async def _handle_message_failure(
    message: IngestMessage, exc: Exception, deps: IngestorDependencies
) -> MessageOutcome:
    classification = classify_error(exc)
    attempts = 1
    if classification.is_rate_limit:
        await deps.state.record_rate_limit(
            message.repo_id, classification.rate_limit_reset
        )
    if classification.is_transient:
        retry_count = await deps.state.record_failure(
            message.repo_id, str(exc), is_transient=True
        )
        attempts = retry_count or 1
    await _dead_letter(
        deps, message.to_payload(), exc, attempts=attempts, repo_id=message.repo_id
    )
    return MessageOutcome(
        status=MessageStatus.FAILED,
        repo_id=message.repo_id,
        message_type=message.type,
        error=str(exc),
        dead_lettered=True,
    )


async def _dead_letter(
    deps: IngestorDependencies,
    original: dict[str, typ.Any],
    exc: BaseException,
    *,
    attempts: int,
    repo_id: object,
) -> None:
    dead_letter = DeadLetterMessage.from_failure(
        original, exc, attempts=attempts, category=categorize_error(exc).value
    )
    await deps.dead_letters.send(dead_letter)
    deps.events.log_dead_lettered(
        repo_id=repo_id if isinstance(repo_id, str) else None,
        attempts=dead_letter.attempts,
        error=exc,
    )


async def _load_repository(
    message: IngestMessage, deps: IngestorDependencies
) -> TrackedRepository:
    stored = await deps.state.get(message.repo_id)
    if stored is None:
        msg = f"Repository {message.repo_id} is not tracked"
        raise MessageValidationError(msg, code="unknown_repository")
    # The stored row owns the cursor; the message may carry newer settings
    return dc.replace(
        stored,
        branch=message.branch or stored.branch,
        is_private=stored.is_private or message.is_private,
        include_patterns=(
            tuple(message.include_patterns)
            if message.include_patterns is not None
            else stored.include_patterns
        ),
        exclude_patterns=(
            tuple(message.exclude_patterns)
            if message.exclude_patterns is not None
            else stored.exclude_patterns
        ),
    )


async def _build_ingestor(
    message: IngestMessage,
    repository: TrackedRepository,
    deps: IngestorDependencies,
) -> SourceIngestor:
    token = await deps.tokens.resolve(repository)
    return deps.ingestor_factory(
        message.provider,
        repository,
        token=token,
        content=deps.content,
        state=deps.state,
        api_url=deps.config.github_api_url,
        http_client=deps.http_client,
        metrics=deps.metrics,
    )


async def _process_item(
    item: ChangedItem,
    repository: TrackedRepository,
    ingestor: SourceIngestor,
    deps: IngestorDependencies,
) -> ItemStatus:
    if not await ingestor.has_changed(item):
        return ItemStatus.SKIPPED

    fetched = await ingestor.fetch_content(item)
    if fetched.is_streamed:
        body = fetched.stream
    else:
        if fetched.content is not None and is_binary_content(fetched.content):
            return ItemStatus.SKIPPED
        body = fetched.content
    if body is None:
        msg = f"No content returned for {repository.slug}:{item.path}"
        raise StoreError(msg, code="empty_content", is_transient=False)

    await deps.content.store(
        body, mime_type=item.mime_type, sha=item.sha, size=fetched.size
    )
    await deps.content.add_reference(
        repository.id, item.path, item.sha, fetched.size, item.mime_type
    )
    return ItemStatus.STORED


async def _process_repository_message(
    message: IngestMessage, deps: IngestorDependencies, ctx: RunContext
) -> MessageOutcome:
    repository = await _load_repository(message, deps)
    sync = SyncRunContext(
        repo_slug=repository.slug, repo_id=repository.id, started_at=utcnow()
    )
    deps.events.log_sync_started(sync)
    ctx.metrics.increment("queue.repository.processed")

    ingestor = await _build_ingestor(message, repository, deps)
    try:
        with ctx.timed("queue.repository.process_time_ms"):
            items = await ingestor.list_changed_items()
            log_info(
                ctx.logger,
                "Listed %d candidate items for %s",
                len(items),
                repository.slug,
            )
            if not items:
                # A moved head whose files are all filtered out still advances
                head = ingestor.head
                await ingestor.update_cursor(
                    head.sha if head else None, head.etag if head else None
                )
                deps.events.log_sync_unchanged(sync)
                return MessageOutcome(
                    status=MessageStatus.UNCHANGED,
                    repo_id=repository.id,
                    message_type=message.type,
                )
            counts = await _process_items(items, repository, ingestor, deps, ctx, sync)
    except Exception as exc:
        deps.events.log_sync_failed(sync, exc, utcnow() - sync.started_at)
        raise
    finally:
        await ingestor.aclose()

    deps.events.log_sync_completed(
        sync,
        candidates=len(items),
        stored=counts.stored,
        skipped=counts.skipped,
        failed=counts.failed,
        duration=utcnow() - sync.started_at,
    )
    return MessageOutcome(
        status=MessageStatus.COMPLETED,
        repo_id=repository.id,
        message_type=message.type,
        stored=counts.stored,
        skipped=counts.skipped,
        failed=counts.failed,
    )


async def _process_items(  # noqa: PLR0913
    items: list[ChangedItem],
    repository: TrackedRepository,
    ingestor: SourceIngestor,
    deps: IngestorDependencies,
    ctx: RunContext,
    sync: SyncRunContext,
) -> _ItemCounts:
    async def handle(item: ChangedItem) -> ItemStatus:
        return await _process_item(item, repository, ingestor, deps)

    group = BoundedTaskGroup(deps.config.concurrency, context=ctx)
    run = await group.run(items, handle)

    for outcome in run.failed:
        error = typ.cast("Exception", outcome.error)
        deps.events.log_item_failed(sync, outcome.item.path, error)
        ctx.metrics.increment("queue.item.error")
    succeeded = run.succeeded
    stored = sum(1 for o in succeeded if o.result is ItemStatus.STORED)
    skipped = len(succeeded) - stored
    ctx.metrics.increment("queue.item.processed", stored)
    ctx.metrics.increment("queue.item.skipped", skipped)

    if run.deadline_exceeded:
        deps.events.log_sync_abandoned(
            sync, processed=len(run.outcomes), total=len(items)
        )
        msg = (
            f"Sync of {repository.slug} abandoned after "
            f"{len(run.outcomes)} of {len(items)} items"
        )
        raise DeadlineExceededError(msg)

    if not succeeded:
        raise StoreError.all_items_failed(repository.slug, len(items))
    if run.failed:
        log_warning(
            ctx.logger,
            "%d of %d items failed for %s",
            len(run.failed),
            len(items),
            repository.slug,
        )

    last = succeeded[-1].item
    await ingestor.update_cursor(last.commit_sha, last.etag)
    return _ItemCounts(stored=stored, skipped=skipped, failed=len(run.failed))


async def _process_file_message(
    message: IngestMessage, deps: IngestorDependencies, ctx: RunContext
) -> MessageOutcome:
    repository = await _load_repository(message, deps)
    path = typ.cast("str", message.path)
    item = ChangedItem(
        path=path,
        sha=typ.cast("str", message.sha),
        size=None,
        mime_type=get_mime_type(path),
    )
    ctx.metrics.increment("queue.file.processed")
    ingestor = await _build_ingestor(message, repository, deps)
    try:
        with ctx.timed("queue.file.process_time_ms"):
            status = await _process_item(item, repository, ingestor, deps)
    finally:
        await ingestor.aclose()

    log_info(ctx.logger, "Processed file %s:%s (%s)", repository.slug, path, status)
    stored = status is ItemStatus.STORED
    return MessageOutcome(
        status=MessageStatus.COMPLETED,
        repo_id=repository.id,
        message_type=message.type,
        stored=int(stored),
        skipped=int(not stored),
    )


__all__ = [
    "BatchResult",
    "ItemStatus",
    "MessageOutcome",
    "MessageStatus",
    "process_queue_batch",
]
