"""GitHub implementation of the :class:`SourceIngestor` protocol."""

from __future__ import annotations

import logging
import typing as typ

from reposync.content.utils import get_mime_type, is_binary_file
from reposync.filters import PathFilter
from reposync.ingestors.models import ChangedItem, CommitHead, FetchedContent

from .client import NOT_MODIFIED

if typ.TYPE_CHECKING:
    from reposync.content.service import ContentStore
    from reposync.state.service import RepositoryStateStore, TrackedRepository

    from .client import GitHubRestClient

logger = logging.getLogger(__name__)


class GitHubIngestor:
    """Detect changes and fetch content for one tracked GitHub repository."""

    def __init__(
        self,
        repository: TrackedRepository,
        client: GitHubRestClient,
        *,
        content: ContentStore,
        state: RepositoryStateStore,
    ) -> None:
        """Bind the ingestor to a repository snapshot and its collaborators."""
        self._repository = repository
        self._client = client
        self._content = content
        self._state = state
        self._filter = PathFilter.build(
            repository.include_patterns, repository.exclude_patterns
        )
        self._head: CommitHead | None = None

    @property
    def repository(self) -> TrackedRepository:
        """Return the repository snapshot this ingestor reads."""
        return self._repository

    @property
    def head(self) -> CommitHead | None:
        """Return the head seen by the last :meth:`list_changed_items` call."""
        return self._head

    async def aclose(self) -> None:
        """Close the underlying REST client."""
        await self._client.aclose()

    async def latest_commit(self) -> CommitHead | None:
        """Return the branch head, or ``None`` on a 304 for the stored ETag."""
        repo = self._repository
        result = await self._client.get_commit(
            repo.owner, repo.repo, repo.branch, etag=repo.etag
        )
        if result is NOT_MODIFIED:
            return None
        commit = result.data
        return CommitHead(sha=commit.sha, tree_sha=commit.tree_sha, etag=result.etag)

    async def list_changed_items(self) -> list[ChangedItem]:
        """List every filtered blob at the new head when the cursor moved."""
        head = await self.latest_commit()
        self._head = head
        if head is None or head.sha == self._repository.last_commit_sha:
            return []

        repo = self._repository
        result = await self._client.get_tree(repo.owner, repo.repo, head.tree_sha)
        if result is NOT_MODIFIED:
            return []
        tree = result.data
        if tree.truncated:
            logger.warning(
                "Tree listing for %s at %s was truncated by GitHub",
                repo.slug,
                head.sha,
            )

        items: list[ChangedItem] = []
        for entry in tree.tree:
            if not entry.is_blob:
                continue
            if not self._filter.allows(entry.path) or is_binary_file(entry.path):
                continue
            items.append(
                ChangedItem(
                    path=entry.path,
                    sha=entry.sha,
                    size=entry.size,
                    mime_type=get_mime_type(entry.path),
                    commit_sha=head.sha,
                    etag=head.etag,
                )
            )
        return items

    async def has_changed(self, item: ChangedItem) -> bool:
        """Return False when the stored reference already holds ``item.sha``."""
        reference = await self._content.get_reference(self._repository.id, item.path)
        return reference is None or reference.sha != item.sha

    async def fetch_content(self, item: ChangedItem) -> FetchedContent:
        """Fetch the blob behind ``item``."""
        repo = self._repository
        return await self._client.get_blob(
            repo.owner, repo.repo, item.sha, size=item.size
        )

    async def update_cursor(self, commit_sha: str | None, etag: str | None) -> bool:
        """Stamp success and advance the cursor to ``commit_sha``."""
        return await self._state.record_success(
            self._repository.id, commit_sha=commit_sha, etag=etag
        )


__all__ = ["GitHubIngestor"]
