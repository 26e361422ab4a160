"""Rate-limit aware GitHub REST client used by the ingestor and scheduler.

Every call accepts an optional stored ETag, sent as ``If-None-Match``; a
``304 Not Modified`` answer returns :data:`NOT_MODIFIED` instead of a body.
Rate-limit headers are parsed from every response and a warning is emitted
when the remaining budget drops under 10% of the limit. Non-2xx responses
and transport failures are normalised into
:class:`~reposync.errors.SourceAPIError`.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import enum
import typing as typ

import httpx
import msgspec

from reposync.errors import AuthError, SourceAPIError
from reposync.ingestors.models import FetchedContent
from reposync.observability import IngestionEventLogger

from .models import ApiMessage, Blob, Commit, Tree

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from reposync.metrics import MetricsSink

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "reposync/0.1"
GITHUB_API_VERSION = "2022-11-28"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
# Blobs at or above this size are streamed instead of decoded inline
INLINE_BLOB_LIMIT = 1024 * 1024

_HTTP_NOT_MODIFIED = 304
_HTTP_ERROR_STATUS_THRESHOLD = 400
_LOW_RATE_LIMIT_RATIO = 0.1


class _NotModified(enum.Enum):
    NOT_MODIFIED = "not_modified"


NOT_MODIFIED: typ.Final = _NotModified.NOT_MODIFIED
type NotModified = typ.Literal[_NotModified.NOT_MODIFIED]


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubRestConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    api_url: str = DEFAULT_API_URL
    timeout_s: float = 20.0
    user_agent: str = DEFAULT_USER_AGENT


def _header_int(headers: httpx.Headers, name: str) -> int:
    raw = headers.get(name, "0")
    try:
        return int(raw)
    except ValueError:
        return 0


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Parsed ``x-ratelimit-*`` headers; missing values default to 0."""

    limit: int = 0
    remaining: int = 0
    reset: int = 0
    used: int = 0

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> RateLimitInfo:
        """Read the four rate-limit headers from a response."""
        return cls(
            limit=_header_int(headers, "x-ratelimit-limit"),
            remaining=_header_int(headers, "x-ratelimit-remaining"),
            reset=_header_int(headers, "x-ratelimit-reset"),
            used=_header_int(headers, "x-ratelimit-used"),
        )

    @property
    def is_low(self) -> bool:
        """Return True when under 10% of the budget remains."""
        return self.remaining < self.limit * _LOW_RATE_LIMIT_RATIO


@dataclasses.dataclass(frozen=True, slots=True)
class ApiResponse[T]:
    """Decoded body plus the rate-limit state and ETag of the response."""

    data: T
    rate_limit: RateLimitInfo
    etag: str | None = None


def _decode_blob(blob: Blob, *, operation: str) -> bytes:
    if blob.encoding == "base64":
        try:
            return base64.b64decode(blob.content)
        except (binascii.Error, ValueError) as exc:
            raise SourceAPIError(
                f"GitHub API {operation} returned undecodable base64: {exc}",
                code=f"github_{operation}_error",
                is_transient=False,
            ) from exc
    return blob.content.encode("utf-8")


class GitHubRestClient:
    """GitHub REST client for commits, trees and blobs.

    Parameters
    ----------
    config
        Token and endpoint configuration.
    http_client
        Optional preconfigured httpx client; when omitted the client owns
        one and closes it in :meth:`aclose`.
    metrics
        Optional sink receiving rate-limit gauges.

    """

    def __init__(
        self,
        config: GitHubRestConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise AuthError.missing_config("GitHub token")

        self._config = config
        self._metrics = metrics
        self._events = IngestionEventLogger()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
        )
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "User-Agent": config.user_agent,
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        self.last_rate_limit: RateLimitInfo | None = None

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubRestClient:
        """Return the client for use as an async context manager."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close owned resources on exit."""
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self._config.api_url.rstrip('/')}{path}"

    def _track_rate_limit(self, response: httpx.Response) -> RateLimitInfo:
        rate_limit = RateLimitInfo.from_headers(response.headers)
        self.last_rate_limit = rate_limit
        if self._metrics is not None:
            self._metrics.gauge("github.rate_limit.remaining", rate_limit.remaining)
        if rate_limit.is_low:
            self._events.log_rate_limit_low(
                remaining=rate_limit.remaining,
                limit=rate_limit.limit,
                reset=rate_limit.reset,
            )
        return rate_limit

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = msgspec.json.decode(response.content, type=ApiMessage)
        except msgspec.DecodeError:
            return response.reason_phrase or "Unknown GitHub API error"
        return body.message or response.reason_phrase or "Unknown GitHub API error"

    def _raise_for_status(
        self,
        response: httpx.Response,
        rate_limit: RateLimitInfo,
        *,
        operation: str,
    ) -> None:
        if response.status_code < _HTTP_ERROR_STATUS_THRESHOLD:
            return
        raise SourceAPIError.from_response(
            response.status_code,
            self._error_message(response),
            operation=operation,
            rate_limit_reset=rate_limit.reset or None,
        )

    async def _get[T](
        self,
        path: str,
        response_type: type[T],
        *,
        operation: str,
        etag: str | None = None,
        params: dict[str, str] | None = None,
    ) -> ApiResponse[T] | NotModified:
        headers = dict(self._headers)
        if etag:
            headers["If-None-Match"] = etag
        try:
            response = await self._client.get(
                self._url(path), headers=headers, params=params
            )
        except httpx.TransportError as exc:
            raise SourceAPIError.transport(operation, exc) from exc

        rate_limit = self._track_rate_limit(response)
        if response.status_code == _HTTP_NOT_MODIFIED:
            return NOT_MODIFIED
        self._raise_for_status(response, rate_limit, operation=operation)
        try:
            data = msgspec.json.decode(response.content, type=response_type)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            raise SourceAPIError(
                f"GitHub API {operation} returned an unexpected payload: {exc}",
                status_code=response.status_code,
                code=f"github_{operation}_error",
                is_transient=False,
            ) from exc
        return ApiResponse(
            data=data, rate_limit=rate_limit, etag=response.headers.get("etag")
        )

    async def get_commit(
        self, owner: str, repo: str, ref: str, *, etag: str | None = None
    ) -> ApiResponse[Commit] | NotModified:
        """Fetch the commit ``ref`` (a SHA or branch name) resolves to."""
        return await self._get(
            f"/repos/{owner}/{repo}/commits/{ref}",
            Commit,
            operation="get_commit",
            etag=etag,
        )

    async def get_tree(
        self,
        owner: str,
        repo: str,
        tree_sha: str,
        *,
        recursive: bool = True,
        etag: str | None = None,
    ) -> ApiResponse[Tree] | NotModified:
        """Fetch a tree listing, recursively by default."""
        return await self._get(
            f"/repos/{owner}/{repo}/git/trees/{tree_sha}",
            Tree,
            operation="get_tree",
            etag=etag,
            params={"recursive": "1"} if recursive else None,
        )

    async def get_blob(
        self,
        owner: str,
        repo: str,
        sha: str,
        *,
        size: int | None = None,
    ) -> FetchedContent:
        """Fetch a blob, buffering small bodies and streaming large ones.

        When ``size`` is known to be at least 1 MiB the JSON round trip is
        skipped and a raw stream is returned directly.
        """
        if size is not None and size >= INLINE_BLOB_LIMIT:
            return FetchedContent(
                sha=sha, size=size, stream=self.stream_blob(owner, repo, sha)
            )

        result = await self._get(
            f"/repos/{owner}/{repo}/git/blobs/{sha}", Blob, operation="get_blob"
        )
        if result is NOT_MODIFIED:
            # No ETag is sent for blobs, so GitHub never answers 304 here
            msg = f"unexpected 304 for blob {sha}"
            raise SourceAPIError(msg, status_code=_HTTP_NOT_MODIFIED)
        blob = result.data
        if blob.size >= INLINE_BLOB_LIMIT and not blob.content:
            return FetchedContent(
                sha=blob.sha,
                size=blob.size,
                stream=self.stream_blob(owner, repo, sha),
            )
        return FetchedContent(
            sha=blob.sha,
            size=blob.size,
            content=_decode_blob(blob, operation="get_blob"),
        )

    async def stream_blob(
        self, owner: str, repo: str, sha: str, *, chunk_size: int = 64 * 1024
    ) -> cabc.AsyncIterator[bytes]:
        """Yield the raw bytes of a blob without buffering the whole body.

        The request is only issued once iteration starts.
        """
        operation = "stream_blob"
        headers = dict(self._headers)
        headers["Accept"] = RAW_MEDIA_TYPE
        url = self._url(f"/repos/{owner}/{repo}/git/blobs/{sha}")
        try:
            async with self._client.stream("GET", url, headers=headers) as response:
                rate_limit = self._track_rate_limit(response)
                if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
                    await response.aread()
                    self._raise_for_status(response, rate_limit, operation=operation)
                async for chunk in response.aiter_bytes(chunk_size):
                    yield chunk
        except httpx.TransportError as exc:
            raise SourceAPIError.transport(operation, exc) from exc


__all__ = [
    "DEFAULT_API_URL",
    "INLINE_BLOB_LIMIT",
    "NOT_MODIFIED",
    "ApiResponse",
    "GitHubRestClient",
    "GitHubRestConfig",
    "NotModified",
    "RateLimitInfo",
]
