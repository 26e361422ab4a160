"""SourceIngestor protocol implemented once per origin provider."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from reposync.ingestors.models import ChangedItem, CommitHead, FetchedContent


@typ.runtime_checkable
class SourceIngestor(typ.Protocol):
    """Change detection and content access for one tracked repository.

    An ingestor is bound to a single repository snapshot when it is built by
    :func:`reposync.ingestors.create_ingestor`; every method works against
    that repository's stored cursor.

    Examples
    --------
    >>> ingestor = create_ingestor("github", repository, token=token,
    ...                            content=content_store, state=state_store)
    >>> items = await ingestor.list_changed_items()
    >>> if items:
    ...     await ingestor.update_cursor(items[-1].commit_sha, items[-1].etag)

    """

    @property
    def head(self) -> CommitHead | None:
        """Return the head observed by the last change detection, if any."""
        ...

    async def latest_commit(self) -> CommitHead | None:
        """Return the branch head, or ``None`` when the stored ETag still holds."""
        ...

    async def list_changed_items(self) -> list[ChangedItem]:
        """Return the filtered candidate set, or an empty list when unchanged.

        The result is the full set of files at the new head that pass the
        path filters, not a diff against the previous cursor.
        """
        ...

    async def has_changed(self, item: ChangedItem) -> bool:
        """Return whether the stored reference for ``item.path`` differs."""
        ...

    async def fetch_content(self, item: ChangedItem) -> FetchedContent:
        """Fetch the body of ``item``, streaming large files."""
        ...

    async def update_cursor(self, commit_sha: str | None, etag: str | None) -> bool:
        """Record a successful sync and advance the stored cursor."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources held by the ingestor."""
        ...


__all__ = ["SourceIngestor"]
