"""Content-addressed blob storage with per-file references."""

from __future__ import annotations

from .backends import (
    BlobBackend,
    FilesystemBlobBackend,
    HttpBlobBackend,
    InMemoryBlobBackend,
)
from .service import ContentStore, DeleteOutcome, FileReference, StoredContent
from .storage import ContentBlob, RepositoryFile
from .utils import blob_key, get_mime_type, git_blob_sha, is_binary_content

__all__ = [
    "BlobBackend",
    "ContentBlob",
    "ContentStore",
    "DeleteOutcome",
    "FileReference",
    "FilesystemBlobBackend",
    "HttpBlobBackend",
    "InMemoryBlobBackend",
    "RepositoryFile",
    "StoredContent",
    "blob_key",
    "get_mime_type",
    "git_blob_sha",
    "is_binary_content",
]
