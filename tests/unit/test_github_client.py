"""Unit tests for the GitHub REST client against the fake API."""

from __future__ import annotations

import typing as typ

import pytest
import pytest_asyncio

from reposync.content.utils import git_blob_sha
from reposync.errors import AuthError, SourceAPIError
from reposync.github.client import (
    INLINE_BLOB_LIMIT,
    NOT_MODIFIED,
    GitHubRestClient,
    GitHubRestConfig,
)
from reposync.metrics import InMemoryMetricsSink
from tests.helpers.github_api import FakeGitHub

if typ.TYPE_CHECKING:
    import collections.abc as cabc


@pytest_asyncio.fixture
async def client(
    fake_github: FakeGitHub, metrics: InMemoryMetricsSink
) -> cabc.AsyncIterator[GitHubRestClient]:
    """Yield a REST client routed to the fake API."""
    http_client = fake_github.client()
    rest = GitHubRestClient(
        GitHubRestConfig(token="test-token"), http_client=http_client, metrics=metrics
    )
    try:
        yield rest
    finally:
        await rest.aclose()
        await http_client.aclose()


def test_empty_token_is_rejected() -> None:
    """A blank token fails fast with a configuration error."""
    with pytest.raises(AuthError) as excinfo:
        GitHubRestClient(GitHubRestConfig(token="  "))

    assert excinfo.value.code == "auth_config_missing"


class TestCommitsAndTrees:
    """Commit lookups, conditional requests and tree listings."""

    @pytest.mark.asyncio
    async def test_get_commit_returns_etag_and_sends_headers(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """Commit lookups carry auth and API version headers."""
        head = fake_github.push("acme", "api", {"README.md": "# api\n"})

        result = await client.get_commit("acme", "api", "main")

        assert result is not NOT_MODIFIED
        assert result.data.sha == head
        assert result.data.tree_sha == f"tree-{head}"
        assert result.etag == f'W/"{head}"'
        request = fake_github.requests[-1]
        assert request.headers["authorization"] == "Bearer test-token"
        assert request.headers["x-github-api-version"] == "2022-11-28"

    @pytest.mark.asyncio
    async def test_matching_etag_returns_not_modified(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """A 304 for the stored ETag is surfaced as NOT_MODIFIED."""
        head = fake_github.push("acme", "api", {"README.md": "# api\n"})

        result = await client.get_commit("acme", "api", "main", etag=f'W/"{head}"')

        assert result is NOT_MODIFIED
        assert fake_github.requests[-1].headers["if-none-match"] == f'W/"{head}"'

    @pytest.mark.asyncio
    async def test_get_tree_is_recursive(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """Tree listings request recursion and include nested blobs."""
        head = fake_github.push("acme", "api", {"src/app.py": "x = 1\n"})

        result = await client.get_tree("acme", "api", f"tree-{head}")

        assert result is not NOT_MODIFIED
        blobs = [entry.path for entry in result.data.tree if entry.is_blob]
        assert blobs == ["src/app.py"]
        assert fake_github.requests[-1].url.params["recursive"] == "1"


class TestBlobs:
    """Blob downloads."""

    @pytest.mark.asyncio
    async def test_small_blob_is_decoded(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """Base64 blob payloads are decoded in memory."""
        fake_github.push("acme", "api", {"a.txt": "alpha\n"})
        sha = git_blob_sha(b"alpha\n")

        fetched = await client.get_blob("acme", "api", sha, size=6)

        assert not fetched.is_streamed
        assert fetched.content == b"alpha\n"
        assert fetched.size == 6

    @pytest.mark.asyncio
    async def test_large_blob_is_streamed_raw(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """Blobs of at least 1 MiB skip the JSON API and stream raw bytes."""
        body = b"x" * INLINE_BLOB_LIMIT
        fake_github.push("acme", "api", {"big.txt": body})
        sha = git_blob_sha(body)

        fetched = await client.get_blob("acme", "api", sha, size=len(body))

        assert fetched.is_streamed
        assert fake_github.requests_to("/git/blobs/") == [], "stream is lazy"
        assert fetched.stream is not None
        chunks = [chunk async for chunk in fetched.stream]
        assert b"".join(chunks) == body
        request = fake_github.requests_to("/git/blobs/")[0]
        assert request.headers["accept"] == "application/vnd.github.raw"


class TestErrors:
    """Error normalisation and rate-limit tracking."""

    @pytest.mark.asyncio
    async def test_rate_limit_error(
        self, client: GitHubRestClient, fake_github: FakeGitHub
    ) -> None:
        """A 403 rate-limit answer carries the reset epoch."""
        fake_github.push("acme", "api", {"a.txt": "a"})
        fake_github.fail("/commits/", 403, "API rate limit exceeded", remaining=0)

        with pytest.raises(SourceAPIError) as excinfo:
            await client.get_commit("acme", "api", "main")

        assert excinfo.value.is_rate_limit_error
        assert excinfo.value.is_transient
        assert excinfo.value.rate_limit_reset == fake_github.rate_limit_reset

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self, client: GitHubRestClient) -> None:
        """Unknown repositories produce a non-transient error."""
        with pytest.raises(SourceAPIError) as excinfo:
            await client.get_commit("acme", "missing", "main")

        assert excinfo.value.status_code == 404
        assert not excinfo.value.is_transient
        assert "Not Found" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_rate_limit_gauge_is_recorded(
        self,
        client: GitHubRestClient,
        fake_github: FakeGitHub,
        metrics: InMemoryMetricsSink,
    ) -> None:
        """Every response updates the remaining-budget gauge."""
        fake_github.push("acme", "api", {"a.txt": "a"})
        fake_github.rate_limit_remaining = 42

        await client.get_commit("acme", "api", "main")

        assert metrics.gauges["github.rate_limit.remaining"] == 42
        assert client.last_rate_limit is not None
        assert client.last_rate_limit.is_low
