"""Durable dead-letter records."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reposync.common.db import Base, UTCDateTime
from reposync.common.time import utcnow


class DeadLetterRecord(Base):
    """Append-only copy of a message that failed processing."""

    __tablename__ = "dead_letters"
    __table_args__ = (Index("ix_dead_letters_repo", "repo_id", "last_attempt_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    message_type: Mapped[str | None] = mapped_column(String(32), default=None)
    repo_id: Mapped[str | None] = mapped_column(String(36), default=None)
    error_message: Mapped[str] = mapped_column(Text())
    error_code: Mapped[str | None] = mapped_column(String(64), default=None)
    error_category: Mapped[str | None] = mapped_column(String(64), default=None)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    last_attempt_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    recorded_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
