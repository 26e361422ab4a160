"""Error taxonomy shared by every stage of the ingestion pipeline.

Each error carries a machine-readable ``code`` and an ``is_transient`` flag.
Transient failures are retried through the repository backoff schedule;
non-transient failures are routed straight to the dead-letter queue.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import httpx
from sqlalchemy.exc import InterfaceError, OperationalError

# HTTP status code threshold for server errors (5xx)
_HTTP_SERVER_ERROR_THRESHOLD = 500
_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429


class IngestError(RuntimeError):
    """Base class for classified ingestion failures."""

    default_code: typ.ClassVar[str] = "ingest_error"
    default_transient: typ.ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        is_transient: bool | None = None,
    ) -> None:
        """Initialise with a message, optional code and transient flag."""
        self.code = code or self.default_code
        self.is_transient = (
            self.default_transient if is_transient is None else is_transient
        )
        super().__init__(message)


class AuthError(IngestError):
    """Raised when a credential cannot be resolved or refreshed."""

    default_code = "auth_error"

    @classmethod
    def credentials_not_found(cls, user_id: str) -> AuthError:
        """Return an error for a user without stored provider credentials."""
        return cls(
            f"No GitHub credentials found for user {user_id}",
            code="credentials_not_found",
        )

    @classmethod
    def installation_not_found(cls, owner: str, repo: str) -> AuthError:
        """Return an error when no app installation covers a repository."""
        return cls(
            f"No GitHub App installation found for repository {owner}/{repo}",
            code="installation_not_found",
        )

    @classmethod
    def refresh_failed(cls, detail: str) -> AuthError:
        """Return a non-transient error for a failed token refresh."""
        return cls(f"Failed to refresh GitHub token: {detail}", code="refresh_failed")

    @classmethod
    def missing_config(cls, what: str) -> AuthError:
        """Return an error when required auth configuration is absent."""
        return cls(f"{what} is not configured", code="auth_config_missing")


class SourceAPIError(IngestError):
    """Normalised error for responses from the origin API."""

    default_code = "source_api_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        is_rate_limit_error: bool = False,
        rate_limit_reset: int | None = None,
        is_transient: bool | None = None,
    ) -> None:
        """Initialise with HTTP status and rate-limit details."""
        self.status_code = status_code
        self.is_rate_limit_error = is_rate_limit_error
        self.rate_limit_reset = rate_limit_reset
        super().__init__(message, code=code, is_transient=is_transient)

    @classmethod
    def from_response(
        cls,
        status_code: int,
        message: str,
        *,
        operation: str,
        rate_limit_reset: int | None = None,
    ) -> SourceAPIError:
        """Classify a non-2xx response.

        A rate-limit error is a 403 whose message mentions the rate limit, or
        any 429. Transient errors are 5xx, 429 and rate-limit responses.
        """
        is_rate_limit = (
            status_code == _HTTP_FORBIDDEN and "rate limit" in message.lower()
        ) or status_code == _HTTP_TOO_MANY_REQUESTS
        is_transient = (
            status_code >= _HTTP_SERVER_ERROR_THRESHOLD
            or status_code == _HTTP_TOO_MANY_REQUESTS
            or is_rate_limit
        )
        return cls(
            f"GitHub API {operation} failed with HTTP {status_code}: {message}",
            status_code=status_code,
            code=f"github_{operation}_error",
            is_rate_limit_error=is_rate_limit,
            rate_limit_reset=rate_limit_reset,
            is_transient=is_transient,
        )

    @classmethod
    def transport(cls, operation: str, exc: BaseException) -> SourceAPIError:
        """Return a transient error for network-level failures."""
        return cls(
            f"GitHub API {operation} transport failure: {exc}",
            code=f"github_{operation}_error",
            is_transient=True,
        )


class StoreError(IngestError):
    """Raised when the blob backend or metadata store fails."""

    default_code = "store_error"
    default_transient = True

    @classmethod
    def hash_required(cls) -> StoreError:
        """Return an error for streamed content without a precomputed hash."""
        return cls(
            "Content hash must be provided for streaming content",
            code="hash_required",
            is_transient=False,
        )

    @classmethod
    def size_required(cls) -> StoreError:
        """Return an error for streamed content without a size."""
        return cls(
            "Content size must be provided for streaming content",
            code="size_required",
            is_transient=False,
        )

    @classmethod
    def backend_failure(cls, operation: str, key: str, detail: str) -> StoreError:
        """Return a transient error for a failed blob backend call."""
        return cls(
            f"Blob backend {operation} failed for {key}: {detail}",
            code=f"blob_{operation}_failed",
        )

    @classmethod
    def all_items_failed(cls, repo_slug: str, count: int) -> StoreError:
        """Return an error when no candidate of a repository sync succeeded."""
        return cls(
            f"All {count} candidate items failed for {repo_slug}",
            code="all_items_failed",
        )


class MessageValidationError(IngestError):
    """Raised for malformed queue messages; never retried."""

    default_code = "invalid_message"

    @classmethod
    def missing_fields(cls, fields: typ.Iterable[str]) -> MessageValidationError:
        """Return an error naming the missing required fields."""
        return cls(f"Message missing required fields: {', '.join(sorted(fields))}")

    @classmethod
    def unsupported_provider(cls, provider: str) -> MessageValidationError:
        """Return an error for a provider without a registered ingestor."""
        return cls(f"Unsupported provider: {provider}", code="unsupported_provider")


class DeadlineExceededError(IngestError):
    """Raised when a soft wall-clock deadline passes mid-run."""

    default_code = "deadline_exceeded"
    default_transient = True


@dc.dataclass(frozen=True, slots=True)
class ErrorClassification:
    """How a message-level failure should be routed."""

    is_transient: bool
    code: str | None
    is_rate_limit: bool = False
    rate_limit_reset: int | None = None


def classify_error(exc: BaseException) -> ErrorClassification:
    """Classify ``exc`` once for retry, rate-limit and dead-letter routing."""
    if isinstance(exc, SourceAPIError):
        return ErrorClassification(
            is_transient=exc.is_transient,
            code=exc.code,
            is_rate_limit=exc.is_rate_limit_error,
            rate_limit_reset=exc.rate_limit_reset,
        )
    return ErrorClassification(
        is_transient=is_transient_error(exc), code=error_code(exc)
    )


def is_transient_error(exc: BaseException) -> bool:
    """Return whether a failure should be retried through the backoff schedule.

    Parameters
    ----------
    exc : BaseException
        The failure raised while processing a message.

    Returns
    -------
    bool
        ``True`` for transient failures, ``False`` otherwise.

    """
    if isinstance(exc, IngestError):
        return exc.is_transient
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, (httpx.TransportError, TimeoutError))


def error_code(exc: BaseException) -> str | None:
    """Return the structured code attached to an ingestion error, if any."""
    return exc.code if isinstance(exc, IngestError) else None


__all__ = [
    "AuthError",
    "DeadlineExceededError",
    "ErrorClassification",
    "IngestError",
    "MessageValidationError",
    "SourceAPIError",
    "StoreError",
    "classify_error",
    "error_code",
    "is_transient_error",
]
