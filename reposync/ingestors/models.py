"""Provider-neutral values exchanged between ingestors and the processor."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


@dc.dataclass(frozen=True, slots=True)
class CommitHead:
    """Latest commit on a tracked branch and the validator it came with."""

    sha: str
    tree_sha: str
    etag: str | None = None


@dc.dataclass(frozen=True, slots=True)
class ChangedItem:
    """A file that should be present in the store after this sync.

    ``commit_sha`` and ``etag`` describe the listing the item came from and
    become the new cursor once the item has been handled. Single-file syncs
    leave them unset, as they may leave ``size`` unset.
    """

    path: str
    sha: str
    size: int | None
    mime_type: str
    commit_sha: str | None = None
    etag: str | None = None


@dc.dataclass(frozen=True, slots=True)
class FetchedContent:
    """A fetched file body: buffered ``content`` or a lazy byte ``stream``."""

    sha: str
    size: int
    content: bytes | None = None
    stream: cabc.AsyncIterator[bytes] | None = None

    @property
    def is_streamed(self) -> bool:
        """Return True when the body must be consumed from ``stream``."""
        return self.content is None


__all__ = ["ChangedItem", "CommitHead", "FetchedContent"]
