"""Unit tests for ingestion observability events."""

from __future__ import annotations

import datetime as dt
import logging

import httpx
import pytest
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from reposync.errors import (
    AuthError,
    DeadlineExceededError,
    MessageValidationError,
    SourceAPIError,
    StoreError,
)
from reposync.observability import (
    ErrorCategory,
    IngestionEventLogger,
    IngestionEventType,
    SyncRunContext,
    categorize_error,
)

STARTED = dt.datetime(2026, 6, 1, 8, 30, tzinfo=dt.UTC)


@pytest.fixture
def sync_context() -> SyncRunContext:
    """Return a sync context for acme/api."""
    return SyncRunContext(repo_slug="acme/api", repo_id="repo-1", started_at=STARTED)


class TestCategorizeError:
    """Tests for error categorisation."""

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (
                SourceAPIError.from_response(502, "bad", operation="get_tree"),
                ErrorCategory.TRANSIENT,
            ),
            (
                SourceAPIError.from_response(404, "gone", operation="get_tree"),
                ErrorCategory.CLIENT_ERROR,
            ),
            (
                SourceAPIError.from_response(
                    403, "API rate limit exceeded", operation="get_commit"
                ),
                ErrorCategory.RATE_LIMITED,
            ),
            (
                SourceAPIError.transport("get_blob", OSError("reset")),
                ErrorCategory.TRANSIENT,
            ),
            (AuthError.credentials_not_found("u-1"), ErrorCategory.AUTHENTICATION),
            (MessageValidationError("bad"), ErrorCategory.VALIDATION),
            (DeadlineExceededError("late"), ErrorCategory.DEADLINE),
            (StoreError.all_items_failed("acme/api", 3), ErrorCategory.STORAGE),
            (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
            (
                OperationalError("connect", None, Exception("down")),
                ErrorCategory.DATABASE_CONNECTIVITY,
            ),
            (
                InterfaceError("iface", None, Exception("x")),
                ErrorCategory.DATABASE_CONNECTIVITY,
            ),
            (
                IntegrityError("dup", None, Exception("x")),
                ErrorCategory.DATA_INTEGRITY,
            ),
            (ValueError("other"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, exc: BaseException, expected: ErrorCategory) -> None:
        """Each error family maps to one alert category."""
        assert categorize_error(exc) == expected


class TestIngestionEventLogger:
    """Structured event lines."""

    def test_sync_completed_reports_counts(
        self, sync_context: SyncRunContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Completion lines carry the item counts and duration."""
        with caplog.at_level(logging.INFO, logger="reposync.observability"):
            IngestionEventLogger().log_sync_completed(
                sync_context,
                candidates=4,
                stored=2,
                skipped=1,
                failed=1,
                duration=dt.timedelta(seconds=1.5),
            )

        [record] = caplog.records
        message = record.getMessage()
        assert message.startswith(f"[{IngestionEventType.SYNC_COMPLETED}]")
        assert "repo_slug=acme/api" in message
        assert "duration_seconds=1.500" in message
        assert "candidates=4 stored=2 skipped=1 failed=1" in message

    def test_sync_failed_is_an_error_with_category(
        self, sync_context: SyncRunContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Failures log at ERROR with the error category."""
        error = SourceAPIError.from_response(500, "boom", operation="get_tree")

        with caplog.at_level(logging.INFO, logger="reposync.observability"):
            IngestionEventLogger().log_sync_failed(
                sync_context, error, dt.timedelta(seconds=2)
            )

        [record] = caplog.records
        assert record.levelno == logging.ERROR
        assert "error_type=SourceAPIError" in record.getMessage()
        assert "error_category=transient" in record.getMessage()

    def test_abandoned_and_deadline_are_warnings(
        self, sync_context: SyncRunContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Degraded runs log at WARNING."""
        events = IngestionEventLogger()

        with caplog.at_level(logging.INFO, logger="reposync.observability"):
            events.log_sync_abandoned(sync_context, processed=5, total=20)
            events.log_scheduler_deadline(checked=3, candidates=50)
            events.log_rate_limit_low(remaining=12, limit=5000, reset=1_900_000_000)

        assert [r.levelno for r in caplog.records] == [logging.WARNING] * 3
        assert "processed=5 total=20" in caplog.records[0].getMessage()
        assert "checked=3 candidates=50" in caplog.records[1].getMessage()
        assert "remaining=12 limit=5000" in caplog.records[2].getMessage()

    def test_dead_lettered_names_repository(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Dead-letter events carry the repository and attempt count."""
        with caplog.at_level(logging.INFO, logger="reposync.observability"):
            IngestionEventLogger().log_dead_lettered(
                repo_id="repo-1",
                attempts=3,
                error=StoreError.all_items_failed("acme/api", 2),
            )

        message = caplog.records[0].getMessage()
        assert f"[{IngestionEventType.DEAD_LETTERED}]" in message
        assert "repo_id=repo-1 attempts=3" in message
        assert "error_category=storage" in message

    def test_webhook_events(self, caplog: pytest.LogCaptureFixture) -> None:
        """Accepted and rejected deliveries are both logged."""
        events = IngestionEventLogger()

        with caplog.at_level(logging.INFO, logger="reposync.observability"):
            events.log_webhook_accepted(
                event="push", delivery="d-1", status="processed", repo_slug="acme/api"
            )
            events.log_webhook_rejected(delivery="d-2", reason="signature mismatch")

        accepted, rejected = caplog.records
        assert "event=push delivery=d-1 status=processed" in accepted.getMessage()
        assert rejected.levelno == logging.WARNING
        assert "reason=signature mismatch" in rejected.getMessage()
