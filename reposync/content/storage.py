"""Persistence models for content-addressed blobs and their file references."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import uuid

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reposync.common.db import Base, UTCDateTime
from reposync.common.time import utcnow


class ContentBlob(Base):
    """One row per distinct content body, keyed by its hash."""

    __tablename__ = "content_blobs"

    sha: Mapped[str] = mapped_column(String(64), primary_key=True)
    size: Mapped[int] = mapped_column(BigInteger)
    mime_type: Mapped[str] = mapped_column(String(255))
    storage_key: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class RepositoryFile(Base):
    """Maps a path in a tracked repository to the blob holding its bytes."""

    __tablename__ = "repository_files"
    __table_args__ = (
        UniqueConstraint("repo_id", "path", name="uq_repository_files_path"),
        Index("ix_repository_files_sha", "sha"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    repo_id: Mapped[str] = mapped_column(
        ForeignKey("provider_repositories.id", ondelete="CASCADE"), nullable=False
    )
    path: Mapped[str] = mapped_column(String(1024))
    sha: Mapped[str] = mapped_column(String(64))
    size: Mapped[int] = mapped_column(BigInteger, default=0)
    mime_type: Mapped[str] = mapped_column(String(255))
    last_modified: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )
