"""Observability primitives for repository ingestion health.

Provides structured logging and error categorisation for sync throughput,
per-item failures, scheduler passes, webhook deliveries and dead letters.
All events are emitted as ``[event] key=value`` log lines suitable for
parsing by log aggregators.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import typing as typ

import httpx
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from reposync.errors import (
    AuthError,
    DeadlineExceededError,
    MessageValidationError,
    SourceAPIError,
    StoreError,
)

if typ.TYPE_CHECKING:
    import datetime as dt

logger = logging.getLogger(__name__)

# HTTP status code threshold for server errors (5xx)
_HTTP_SERVER_ERROR_THRESHOLD = 500


class IngestionEventType(enum.StrEnum):
    """Structured log event types for ingestion observability."""

    SYNC_STARTED = "ingestion.sync.started"
    SYNC_COMPLETED = "ingestion.sync.completed"
    SYNC_UNCHANGED = "ingestion.sync.unchanged"
    SYNC_FAILED = "ingestion.sync.failed"
    SYNC_ABANDONED = "ingestion.sync.abandoned"
    ITEM_FAILED = "ingestion.item.failed"
    SCHEDULER_COMPLETED = "ingestion.scheduler.completed"
    SCHEDULER_DEADLINE = "ingestion.scheduler.deadline"
    WEBHOOK_ACCEPTED = "ingestion.webhook.accepted"
    WEBHOOK_REJECTED = "ingestion.webhook.rejected"
    DEAD_LETTERED = "ingestion.message.dead_lettered"
    RATE_LIMIT_LOW = "ingestion.rate_limit.low"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts and dead letters."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    STORAGE = "storage"
    DEADLINE = "deadline"
    NETWORK = "network"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class SyncRunContext:
    """Shared context for a single repository sync run."""

    repo_slug: str
    repo_id: str
    started_at: dt.datetime


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (AuthError, ErrorCategory.AUTHENTICATION),
    (MessageValidationError, ErrorCategory.VALIDATION),
    (DeadlineExceededError, ErrorCategory.DEADLINE),
    (StoreError, ErrorCategory.STORAGE),
    (httpx.TransportError, ErrorCategory.NETWORK),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorise an exception for alerting purposes.

    Returns:
        ErrorCategory indicating the type of failure for alert routing.

    """
    # SourceAPIError splits on rate limiting and status code
    if isinstance(exc, SourceAPIError):
        if exc.is_rate_limit_error:
            return ErrorCategory.RATE_LIMITED
        if exc.status_code is None or exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD:
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


class IngestionEventLogger:
    """Emit structured ingestion events via Python logging.

    Events are emitted at INFO for progress, WARNING for degraded runs
    (abandoned syncs, deadlines, low rate-limit headroom) and ERROR for
    failures.
    """

    def log_sync_started(self, context: SyncRunContext) -> None:
        """Log the start of a repository sync."""
        logger.info(
            "[%s] repo_slug=%s repo_id=%s started_at=%s",
            IngestionEventType.SYNC_STARTED,
            context.repo_slug,
            context.repo_id,
            context.started_at.isoformat(),
        )

    def log_sync_unchanged(self, context: SyncRunContext) -> None:
        """Log a sync that found no new commit."""
        logger.info(
            "[%s] repo_slug=%s repo_id=%s",
            IngestionEventType.SYNC_UNCHANGED,
            context.repo_slug,
            context.repo_id,
        )

    def log_sync_completed(  # noqa: PLR0913
        self,
        context: SyncRunContext,
        *,
        candidates: int,
        stored: int,
        skipped: int,
        failed: int,
        duration: dt.timedelta,
    ) -> None:
        """Log successful sync completion with item counts."""
        logger.info(
            "[%s] repo_slug=%s repo_id=%s duration_seconds=%.3f "
            "candidates=%d stored=%d skipped=%d failed=%d",
            IngestionEventType.SYNC_COMPLETED,
            context.repo_slug,
            context.repo_id,
            duration.total_seconds(),
            candidates,
            stored,
            skipped,
            failed,
        )

    def log_sync_abandoned(
        self, context: SyncRunContext, *, processed: int, total: int
    ) -> None:
        """Log a sync cut short by the soft deadline."""
        logger.warning(
            "[%s] repo_slug=%s repo_id=%s processed=%d total=%d",
            IngestionEventType.SYNC_ABANDONED,
            context.repo_slug,
            context.repo_id,
            processed,
            total,
        )

    def log_sync_failed(
        self,
        context: SyncRunContext,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a failed sync with error categorisation."""
        category = categorize_error(error)
        logger.error(
            "[%s] repo_slug=%s repo_id=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            IngestionEventType.SYNC_FAILED,
            context.repo_slug,
            context.repo_id,
            duration.total_seconds(),
            type(error).__name__,
            category,
            str(error),
            exc_info=error,
        )

    def log_item_failed(
        self, context: SyncRunContext, path: str, error: BaseException
    ) -> None:
        """Log one file that could not be fetched or stored."""
        logger.error(
            "[%s] repo_slug=%s path=%s error_type=%s error_category=%s "
            "error_message=%s",
            IngestionEventType.ITEM_FAILED,
            context.repo_slug,
            path,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_scheduler_completed(  # noqa: PLR0913
        self,
        *,
        candidates: int,
        checked: int,
        enqueued: int,
        unchanged: int,
        failed: int,
        duration: dt.timedelta,
    ) -> None:
        """Log the outcome of one scheduler pass."""
        logger.info(
            "[%s] candidates=%d checked=%d enqueued=%d unchanged=%d failed=%d "
            "duration_seconds=%.3f",
            IngestionEventType.SCHEDULER_COMPLETED,
            candidates,
            checked,
            enqueued,
            unchanged,
            failed,
            duration.total_seconds(),
        )

    def log_scheduler_deadline(self, *, checked: int, candidates: int) -> None:
        """Log a scheduler pass that stopped early at its soft deadline."""
        logger.warning(
            "[%s] checked=%d candidates=%d",
            IngestionEventType.SCHEDULER_DEADLINE,
            checked,
            candidates,
        )

    def log_webhook_accepted(
        self, *, event: str, delivery: str, status: str, repo_slug: str | None
    ) -> None:
        """Log a verified webhook delivery and what it did."""
        logger.info(
            "[%s] event=%s delivery=%s status=%s repo_slug=%s",
            IngestionEventType.WEBHOOK_ACCEPTED,
            event,
            delivery,
            status,
            repo_slug,
        )

    def log_webhook_rejected(self, *, delivery: str | None, reason: str) -> None:
        """Log a webhook delivery refused before processing."""
        logger.warning(
            "[%s] delivery=%s reason=%s",
            IngestionEventType.WEBHOOK_REJECTED,
            delivery,
            reason,
        )

    def log_dead_lettered(
        self,
        *,
        repo_id: str | None,
        attempts: int,
        error: BaseException,
    ) -> None:
        """Log a message routed to the dead-letter queue."""
        logger.error(
            "[%s] repo_id=%s attempts=%d error_type=%s error_category=%s "
            "error_message=%s",
            IngestionEventType.DEAD_LETTERED,
            repo_id,
            attempts,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_rate_limit_low(self, *, remaining: int, limit: int, reset: int) -> None:
        """Log that API headroom dropped under the warning threshold."""
        logger.warning(
            "[%s] remaining=%d limit=%d reset=%d",
            IngestionEventType.RATE_LIMIT_LOW,
            remaining,
            limit,
            reset,
        )


__all__ = [
    "ErrorCategory",
    "IngestionEventLogger",
    "IngestionEventType",
    "SyncRunContext",
    "categorize_error",
]
