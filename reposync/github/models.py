"""Typed views of the GitHub REST payloads the ingestor consumes."""

from __future__ import annotations

import msgspec


class TreeRef(msgspec.Struct, frozen=True):
    """Reference to a git tree object."""

    sha: str


class CommitDetail(msgspec.Struct, frozen=True):
    """The ``commit`` object nested in a commit lookup."""

    tree: TreeRef
    message: str = ""


class Commit(msgspec.Struct, frozen=True):
    """A commit as returned by ``GET /repos/{owner}/{repo}/commits/{ref}``."""

    sha: str
    commit: CommitDetail

    @property
    def tree_sha(self) -> str:
        """Return the root tree of the commit."""
        return self.commit.tree.sha


class TreeEntry(msgspec.Struct, frozen=True):
    """One entry of a recursive tree listing."""

    path: str
    type: str
    sha: str
    mode: str = ""
    size: int | None = None

    @property
    def is_blob(self) -> bool:
        """Return True for file entries."""
        return self.type == "blob"


class Tree(msgspec.Struct, frozen=True):
    """A tree listing; ``truncated`` is set when GitHub capped the result."""

    sha: str
    tree: list[TreeEntry]
    truncated: bool = False


class Blob(msgspec.Struct, frozen=True):
    """A blob payload with base64 (or utf-8) encoded content."""

    sha: str
    size: int
    content: str = ""
    encoding: str = "base64"


class ApiMessage(msgspec.Struct):
    """Error body shape; only ``message`` is read."""

    message: str = ""


__all__ = [
    "ApiMessage",
    "Blob",
    "Commit",
    "CommitDetail",
    "Tree",
    "TreeEntry",
    "TreeRef",
]
