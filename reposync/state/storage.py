"""Persistence models for tracked repositories and provider credentials."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import uuid

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from reposync.common.db import Base, UTCDateTime
from reposync.common.time import utcnow

SYSTEM_USER_ID = "system"
DEFAULT_BRANCH = "main"


def _new_id() -> str:
    return str(uuid.uuid4())


class RepositoryConfig(Base):
    """A repository tracked for ingestion, with its sync cursor and gates."""

    __tablename__ = "provider_repositories"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider", "owner", "repo", name="uq_provider_repositories"
        ),
        Index("ix_provider_repositories_origin", "provider", "owner", "repo"),
        Index("ix_provider_repositories_last_synced", "last_synced_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), default=SYSTEM_USER_ID)
    provider: Mapped[str] = mapped_column(String(32), default="github")
    owner: Mapped[str] = mapped_column(String(255))
    repo: Mapped[str] = mapped_column(String(255))
    branch: Mapped[str] = mapped_column(String(255), default=DEFAULT_BRANCH)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    include_patterns: Mapped[list[str] | None] = mapped_column(JSON, default=None)
    exclude_patterns: Mapped[list[str] | None] = mapped_column(JSON, default=None)

    last_commit_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    etag: Mapped[str | None] = mapped_column(String(255), default=None)
    queued_commit_sha: Mapped[str | None] = mapped_column(String(64), default=None)

    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    rate_limit_reset: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )

    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    @property
    def slug(self) -> str:
        """Return the ``owner/repo`` identifier."""
        return f"{self.owner}/{self.repo}"

    @property
    def has_user(self) -> bool:
        """Return True when a real user (not the system install) owns this row."""
        return bool(self.user_id) and self.user_id != SYSTEM_USER_ID


class ProviderCredential(Base):
    """Stored OAuth token or app installation for a provider account."""

    __tablename__ = "provider_credentials"
    __table_args__ = (
        Index("ix_provider_credentials_user", "provider", "user_id"),
        Index("ix_provider_credentials_account", "provider", "account_login"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255))
    provider: Mapped[str] = mapped_column(String(32), default="github")
    account_login: Mapped[str | None] = mapped_column(String(255), default=None)
    access_token: Mapped[str | None] = mapped_column(Text(), default=None)
    refresh_token: Mapped[str | None] = mapped_column(Text(), default=None)
    token_expires_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    installation_id: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )
