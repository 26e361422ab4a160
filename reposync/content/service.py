"""Content-addressed blob store with hash deduplication.

``ContentStore`` pairs a :class:`~reposync.content.backends.BlobBackend` with
the ``content_blobs`` and ``repository_files`` tables. A body is written to
the backend at most once per hash; ``repository_files`` rows act as the
reference count that guards deletion.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from reposync.common.time import utcnow
from reposync.content.backends import HttpBlobBackend
from reposync.content.storage import ContentBlob, RepositoryFile
from reposync.content.utils import blob_key, git_blob_sha
from reposync.errors import StoreError

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reposync.content.backends import BlobBackend, BlobBody


class ContentPersistError(StoreError):
    """Raised when a dedup race leaves no row behind after rollback."""

    default_code = "content_persist_failed"

    def __init__(self, sha: str) -> None:
        """Include the hash in the message for logging."""
        super().__init__(f"expected existing content_blob {sha} after rollback")


class DeleteOutcome(enum.StrEnum):
    """Result of a guarded blob deletion."""

    DELETED = "deleted"
    STILL_REFERENCED = "still_referenced"
    NOT_FOUND = "not_found"


@dc.dataclass(frozen=True, slots=True)
class StoredContent:
    """Metadata for a stored body and whether the write was deduplicated."""

    sha: str
    size: int
    mime_type: str
    storage_key: str
    created_at: dt.datetime
    deduplicated: bool = False

    @classmethod
    def from_row(cls, row: ContentBlob, *, deduplicated: bool) -> StoredContent:
        """Build from a ``ContentBlob`` row."""
        return cls(
            sha=row.sha,
            size=row.size,
            mime_type=row.mime_type,
            storage_key=row.storage_key,
            created_at=row.created_at,
            deduplicated=deduplicated,
        )


@dc.dataclass(frozen=True, slots=True)
class FileReference:
    """A path in a repository pointing at a stored body."""

    repo_id: str
    path: str
    sha: str
    size: int
    mime_type: str
    last_modified: dt.datetime

    @classmethod
    def from_row(cls, row: RepositoryFile) -> FileReference:
        """Build from a ``RepositoryFile`` row."""
        return cls(
            repo_id=row.repo_id,
            path=row.path,
            sha=row.sha,
            size=row.size,
            mime_type=row.mime_type,
            last_modified=row.last_modified,
        )


class ContentStore:
    """Store bodies once per hash and track which files reference them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        backend: BlobBackend,
    ) -> None:
        """Store the session factory and blob backend."""
        self._session_factory = session_factory
        self._backend = backend

    async def aclose(self) -> None:
        """Close the backend's HTTP client when it owns one."""
        if isinstance(self._backend, HttpBlobBackend):
            await self._backend.aclose()

    async def store(
        self,
        content: BlobBody,
        *,
        mime_type: str,
        sha: str | None = None,
        size: int | None = None,
    ) -> StoredContent:
        """Persist ``content`` unless a body with the same hash exists.

        Parameters
        ----------
        content
            Buffered bytes or an async byte stream.
        mime_type
            MIME type recorded with the blob.
        sha
            Precomputed git blob hash. Required for streams; computed for
            buffered bytes when omitted.
        size
            Body size in bytes. Required for streams.

        Returns
        -------
        StoredContent
            Metadata of the stored (or already present) blob.

        Raises
        ------
        StoreError
            If a stream lacks ``sha`` or ``size``, or the backend fails.

        """
        if isinstance(content, bytes):
            sha = sha or git_blob_sha(content)
            size = len(content) if size is None else size
        elif sha is None:
            raise StoreError.hash_required()
        elif size is None:
            raise StoreError.size_required()

        async with self._session_factory() as session:
            existing = await session.get(ContentBlob, sha)
            if existing is not None:
                return StoredContent.from_row(existing, deduplicated=True)

            key = blob_key(sha)
            await self._backend.put(key, content, content_type=mime_type)

            row = ContentBlob(sha=sha, size=size, mime_type=mime_type, storage_key=key)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                # A concurrent writer stored the same hash first
                await session.rollback()
                winner = await session.get(ContentBlob, sha)
                if winner is None:
                    raise ContentPersistError(sha) from exc
                return StoredContent.from_row(winner, deduplicated=True)

            await session.refresh(row)
            return StoredContent.from_row(row, deduplicated=False)

    async def add_reference(  # noqa: PLR0913
        self,
        repo_id: str,
        path: str,
        sha: str,
        size: int,
        mime_type: str,
    ) -> FileReference:
        """Upsert the ``repository_files`` row for ``(repo_id, path)``."""
        async with self._session_factory() as session:
            row = await self._load_reference(session, repo_id, path)
            if row is None:
                row = RepositoryFile(
                    repo_id=repo_id,
                    path=path,
                    sha=sha,
                    size=size,
                    mime_type=mime_type,
                )
                session.add(row)
            else:
                self._apply_reference(row, sha, size, mime_type)
            try:
                await session.commit()
            except IntegrityError:
                # Another worker inserted the same path; update its row instead
                await session.rollback()
                row = await self._load_reference(session, repo_id, path)
                if row is None:
                    raise
                self._apply_reference(row, sha, size, mime_type)
                await session.commit()
            await session.refresh(row)
            return FileReference.from_row(row)

    @staticmethod
    def _apply_reference(
        row: RepositoryFile, sha: str, size: int, mime_type: str
    ) -> None:
        row.sha = sha
        row.size = size
        row.mime_type = mime_type
        row.last_modified = utcnow()

    @staticmethod
    async def _load_reference(
        session: AsyncSession, repo_id: str, path: str
    ) -> RepositoryFile | None:
        return await session.scalar(
            select(RepositoryFile).where(
                RepositoryFile.repo_id == repo_id, RepositoryFile.path == path
            )
        )

    async def get_reference(self, repo_id: str, path: str) -> FileReference | None:
        """Return the current reference for a path, if any."""
        async with self._session_factory() as session:
            row = await self._load_reference(session, repo_id, path)
            return None if row is None else FileReference.from_row(row)

    async def delete(self, sha: str) -> DeleteOutcome:
        """Delete an unreferenced blob from the backend and the metadata table.

        Referenced blobs are left untouched.
        """
        async with self._session_factory() as session:
            row = await session.get(ContentBlob, sha)
            if row is None:
                return DeleteOutcome.NOT_FOUND
            references = await session.scalar(
                select(func.count())
                .select_from(RepositoryFile)
                .where(RepositoryFile.sha == sha)
            )
            if references:
                return DeleteOutcome.STILL_REFERENCED
            await self._backend.delete(row.storage_key)
            await session.delete(row)
            await session.commit()
            return DeleteOutcome.DELETED

    async def exists(self, sha: str) -> bool:
        """Return True when a blob with ``sha`` is stored."""
        async with self._session_factory() as session:
            return await session.get(ContentBlob, sha) is not None

    async def get_metadata(self, sha: str) -> StoredContent | None:
        """Return stored metadata for ``sha``, if present."""
        async with self._session_factory() as session:
            row = await session.get(ContentBlob, sha)
            if row is None:
                return None
            return StoredContent.from_row(row, deduplicated=False)

    async def get_references(self, sha: str) -> list[FileReference]:
        """Return every file referencing ``sha``, ordered by repository and path."""
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(RepositoryFile)
                .where(RepositoryFile.sha == sha)
                .order_by(RepositoryFile.repo_id, RepositoryFile.path)
            )
            return [FileReference.from_row(row) for row in rows]

    async def delete_references_for_repository(self, repo_id: str) -> int:
        """Drop all file references of a repository and return how many went."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(RepositoryFile).where(RepositoryFile.repo_id == repo_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def open_content(self, sha: str) -> bytes | None:
        """Return the stored body for ``sha`` or ``None`` when unknown."""
        metadata = await self.get_metadata(sha)
        if metadata is None:
            return None
        return await self._backend.get(metadata.storage_key)


__all__ = [
    "ContentPersistError",
    "ContentStore",
    "DeleteOutcome",
    "FileReference",
    "StoredContent",
]
