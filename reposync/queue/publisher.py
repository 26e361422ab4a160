"""Queue boundaries used by the scheduler, webhook and processor."""

from __future__ import annotations

import typing as typ

from sqlalchemy import select

from reposync.common.time import from_epoch
from reposync.queue.storage import DeadLetterRecord

if typ.TYPE_CHECKING:
    import dramatiq
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reposync.queue.messages import DeadLetterMessage, IngestMessage


class IngestQueue(typ.Protocol):
    """Destination for ingest messages."""

    async def send(self, message: IngestMessage) -> None:
        """Enqueue ``message`` for processing."""
        ...


class DeadLetterQueue(typ.Protocol):
    """Destination for messages that could not be processed."""

    async def send(self, message: DeadLetterMessage) -> None:
        """Enqueue ``message`` on the dead-letter channel."""
        ...


class DramatiqIngestQueue:
    """Send ingest messages to a Dramatiq actor."""

    def __init__(self, actor: dramatiq.Actor) -> None:
        """Store the actor that consumes ingest payloads."""
        self._actor = actor

    async def send(self, message: IngestMessage) -> None:
        """Send the camelCase payload as the actor's only argument."""
        self._actor.send(message.to_payload())


class DramatiqDeadLetterQueue:
    """Send dead-letter messages to a Dramatiq actor."""

    def __init__(self, actor: dramatiq.Actor) -> None:
        """Store the actor that persists dead letters."""
        self._actor = actor

    async def send(self, message: DeadLetterMessage) -> None:
        """Send the camelCase payload as the actor's only argument."""
        self._actor.send(message.to_payload())


class DeadLetterStore:
    """Persist dead-letter messages as ``dead_letters`` rows.

    Also usable directly as a :class:`DeadLetterQueue` when no broker sits
    between the processor and the database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory."""
        self._session_factory = session_factory

    async def send(self, message: DeadLetterMessage) -> None:
        """Persist ``message``; satisfies :class:`DeadLetterQueue`."""
        await self.record(message)

    async def record(self, message: DeadLetterMessage) -> int:
        """Insert a row for ``message`` and return its id."""
        original = message.original_message
        row = DeadLetterRecord(
            message_type=_as_str(original.get("type")),
            repo_id=_as_str(original.get("repoId")),
            error_message=message.error.message,
            error_code=message.error.code,
            error_category=message.error.category,
            attempts=message.attempts,
            last_attempt_at=from_epoch(message.last_attempt_at),
            payload=message.to_payload(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(row)
            await session.flush()
            return row.id

    async def recent(
        self, *, repo_id: str | None = None, limit: int = 20
    ) -> list[DeadLetterRecord]:
        """Return the newest records, optionally for one repository."""
        stmt = select(DeadLetterRecord).order_by(DeadLetterRecord.id.desc())
        if repo_id is not None:
            stmt = stmt.where(DeadLetterRecord.repo_id == repo_id)
        async with self._session_factory() as session:
            return list((await session.scalars(stmt.limit(limit))).all())


def _as_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


__all__ = [
    "DeadLetterQueue",
    "DeadLetterStore",
    "DramatiqDeadLetterQueue",
    "DramatiqIngestQueue",
    "IngestQueue",
]
