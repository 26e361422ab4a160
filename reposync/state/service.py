"""Repository state store: sync cursor, retry backoff and rate-limit gate.

Each tracked repository moves between Idle, Failed and RateLimited purely
through the timestamps held here; nothing persists an in-progress "syncing"
state. ``get_due`` is the admission gate consulted by the scheduler.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import logging
import typing as typ

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError

from reposync.common.time import from_epoch, utcnow
from reposync.content.storage import RepositoryFile
from reposync.state.storage import DEFAULT_BRANCH, SYSTEM_USER_ID, RepositoryConfig

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

BASE_RETRY_DELAY = dt.timedelta(minutes=5)
MAX_RETRY_DELAY = dt.timedelta(hours=24)
DEFAULT_STALENESS = dt.timedelta(hours=1)
# Applied when a rate-limit response carries no usable reset header
DEFAULT_RATE_LIMIT_BACKOFF = dt.timedelta(minutes=1)
_RECENT_FAILURE_LIMIT = 10
_MAX_BACKOFF_EXPONENT = 16


def backoff_delay(retry_count: int) -> dt.timedelta:
    """Return the retry delay after ``retry_count`` consecutive failures.

    The delay starts at five minutes and doubles per failure, capped at
    24 hours.

    >>> backoff_delay(3)
    datetime.timedelta(seconds=1200)

    """
    exponent = max(retry_count - 1, 0)
    # Cap the exponent before multiplying so huge counts cannot overflow
    if exponent >= _MAX_BACKOFF_EXPONENT:
        return MAX_RETRY_DELAY
    return min(BASE_RETRY_DELAY * (2**exponent), MAX_RETRY_DELAY)


@dc.dataclass(frozen=True, slots=True)
class TrackedRepository:
    """Detached snapshot of a ``RepositoryConfig`` row."""

    id: str
    user_id: str
    provider: str
    owner: str
    repo: str
    branch: str
    is_private: bool
    include_patterns: tuple[str, ...] | None = None
    exclude_patterns: tuple[str, ...] | None = None
    last_commit_sha: str | None = None
    etag: str | None = None
    queued_commit_sha: str | None = None
    retry_count: int = 0
    next_retry_at: dt.datetime | None = None
    rate_limit_reset: dt.datetime | None = None
    last_error: str | None = None
    last_synced_at: dt.datetime | None = None

    @property
    def slug(self) -> str:
        """Return the ``owner/repo`` identifier."""
        return f"{self.owner}/{self.repo}"

    @property
    def has_user(self) -> bool:
        """Return True when a real user (not the system install) owns this row."""
        return bool(self.user_id) and self.user_id != SYSTEM_USER_ID

    @classmethod
    def from_row(cls, row: RepositoryConfig) -> TrackedRepository:
        """Build a snapshot from an ORM row."""
        return cls(
            id=row.id,
            user_id=row.user_id,
            provider=row.provider,
            owner=row.owner,
            repo=row.repo,
            branch=row.branch,
            is_private=row.is_private,
            include_patterns=(
                tuple(row.include_patterns) if row.include_patterns else None
            ),
            exclude_patterns=(
                tuple(row.exclude_patterns) if row.exclude_patterns else None
            ),
            last_commit_sha=row.last_commit_sha,
            etag=row.etag,
            queued_commit_sha=row.queued_commit_sha,
            retry_count=row.retry_count,
            next_retry_at=row.next_retry_at,
            rate_limit_reset=row.rate_limit_reset,
            last_error=row.last_error,
            last_synced_at=row.last_synced_at,
        )


@dc.dataclass(frozen=True, slots=True)
class FailureSummary:
    """One repository currently in a failed state."""

    repo_id: str
    slug: str
    retry_count: int
    next_retry_at: dt.datetime | None
    last_error: str | None


@dc.dataclass(frozen=True, slots=True)
class RepositorySummary:
    """Counts and recent failures for the status query."""

    total: int
    never_synced: int
    failing: int
    rate_limited: int
    recent_failures: tuple[FailureSummary, ...] = ()


class RepositoryStateStore:
    """Read and mutate per-repository sync state.

    Parameters
    ----------
    session_factory
        Async session factory bound to the state database.
    staleness
        Age after which a synced repository is due again.
    clock
        Source of the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        staleness: dt.timedelta = DEFAULT_STALENESS,
        clock: cabc.Callable[[], dt.datetime] = utcnow,
    ) -> None:
        """Store the session factory, staleness threshold and clock."""
        self._session_factory = session_factory
        self._staleness = staleness
        self._clock = clock

    async def get_due(
        self, limit: int = 50, provider: str | None = None
    ) -> list[TrackedRepository]:
        """Return repositories due for a sync check, oldest first.

        A repository is due when it has never synced, its last sync is older
        than the staleness threshold, or its scheduled retry time has passed.
        A pending retry in the future or an unexpired rate-limit gate keeps
        it out.
        """
        now = self._clock()
        stmt = (
            select(RepositoryConfig)
            .where(
                or_(
                    RepositoryConfig.last_synced_at.is_(None),
                    RepositoryConfig.last_synced_at < now - self._staleness,
                    RepositoryConfig.next_retry_at <= now,
                ),
                or_(
                    RepositoryConfig.next_retry_at.is_(None),
                    RepositoryConfig.next_retry_at <= now,
                ),
                or_(
                    RepositoryConfig.rate_limit_reset.is_(None),
                    RepositoryConfig.rate_limit_reset <= now,
                ),
            )
            .order_by(
                RepositoryConfig.last_synced_at.asc().nulls_first(),
                RepositoryConfig.created_at.asc(),
            )
            .limit(limit)
        )
        if provider is not None:
            stmt = stmt.where(RepositoryConfig.provider == provider)
        async with self._session_factory() as session:
            rows = await session.scalars(stmt)
            return [TrackedRepository.from_row(row) for row in rows]

    async def get(self, repo_id: str) -> TrackedRepository | None:
        """Return a repository by id, or ``None``."""
        async with self._session_factory() as session:
            row = await session.get(RepositoryConfig, repo_id)
            return None if row is None else TrackedRepository.from_row(row)

    async def find_by_origin(
        self, provider: str, owner: str, repo: str
    ) -> list[TrackedRepository]:
        """Return every configuration tracking ``owner/repo`` on ``provider``.

        Owner and repository names compare case-insensitively, matching how
        the origin treats them.
        """
        stmt = (
            select(RepositoryConfig)
            .where(
                RepositoryConfig.provider == provider,
                func.lower(RepositoryConfig.owner) == owner.lower(),
                func.lower(RepositoryConfig.repo) == repo.lower(),
            )
            .order_by(RepositoryConfig.created_at)
        )
        async with self._session_factory() as session:
            rows = await session.scalars(stmt)
            return [TrackedRepository.from_row(row) for row in rows]

    async def _mutate(
        self,
        repo_id: str,
        apply: cabc.Callable[[RepositoryConfig], None],
    ) -> TrackedRepository | None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(RepositoryConfig, repo_id)
            if row is None:
                return None
            apply(row)
            return TrackedRepository.from_row(row)

    async def record_success(
        self,
        repo_id: str,
        *,
        commit_sha: str | None = None,
        etag: str | None = None,
    ) -> bool:
        """Clear retry state, stamp ``last_synced_at`` and advance the cursor.

        Returns ``False`` when the repository no longer exists.
        """
        now = self._clock()

        def apply(row: RepositoryConfig) -> None:
            row.retry_count = 0
            row.next_retry_at = None
            row.last_error = None
            row.last_synced_at = now
            if commit_sha is not None:
                row.last_commit_sha = commit_sha
                if row.queued_commit_sha == commit_sha:
                    row.queued_commit_sha = None
            if etag is not None:
                row.etag = etag

        return await self._mutate(repo_id, apply) is not None

    async def record_failure(
        self, repo_id: str, message: str, *, is_transient: bool
    ) -> int | None:
        """Increment the retry counter and schedule the next attempt.

        Transient failures set ``next_retry_at`` by :func:`backoff_delay`;
        non-transient failures clear it so only staleness brings the
        repository back.

        Returns
        -------
        int | None
            The new retry count, or ``None`` when the repository is unknown.

        """
        now = self._clock()

        def apply(row: RepositoryConfig) -> None:
            row.retry_count = (row.retry_count or 0) + 1
            row.next_retry_at = (
                now + backoff_delay(row.retry_count) if is_transient else None
            )
            row.last_error = message

        row = await self._mutate(repo_id, apply)
        if row is None:
            return None
        logger.error(
            "Repository sync error repo_id=%s retry_count=%d next_retry_at=%s "
            "error=%s",
            repo_id,
            row.retry_count,
            row.next_retry_at.isoformat() if row.next_retry_at else None,
            message,
        )
        return row.retry_count

    async def record_rate_limit(self, repo_id: str, reset_epoch: int | None) -> bool:
        """Gate the repository until the origin's rate-limit window resets."""
        if reset_epoch is not None and reset_epoch > 0:
            reset_at = from_epoch(reset_epoch)
        else:
            reset_at = self._clock() + DEFAULT_RATE_LIMIT_BACKOFF

        def apply(row: RepositoryConfig) -> None:
            row.rate_limit_reset = reset_at

        return await self._mutate(repo_id, apply) is not None

    async def mark_queued(self, repo_id: str, commit_sha: str) -> bool:
        """Record that a sync of ``commit_sha`` has been enqueued."""

        def apply(row: RepositoryConfig) -> None:
            row.queued_commit_sha = commit_sha

        return await self._mutate(repo_id, apply) is not None

    async def force_resync(self, repo_id: str) -> bool:
        """Reset the cursor and every gate so the next pass re-ingests fully."""

        def apply(row: RepositoryConfig) -> None:
            row.last_commit_sha = None
            row.etag = None
            row.queued_commit_sha = None
            row.retry_count = 0
            row.next_retry_at = None
            row.rate_limit_reset = None
            row.last_error = None
            row.last_synced_at = None

        return await self._mutate(repo_id, apply) is not None

    async def add_repository(  # noqa: PLR0913
        self,
        *,
        owner: str,
        repo: str,
        provider: str = "github",
        user_id: str = SYSTEM_USER_ID,
        branch: str | None = None,
        is_private: bool = False,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> TrackedRepository:
        """Track a repository, or refresh the existing configuration.

        Calling this again for the same (user, provider, owner, repo) updates
        the branch and visibility instead of creating a duplicate.
        """
        async with self._session_factory() as session:
            row = await self._load_by_key(session, user_id, provider, owner, repo)
            if row is None:
                row = RepositoryConfig(
                    user_id=user_id,
                    provider=provider,
                    owner=owner,
                    repo=repo,
                    branch=branch or DEFAULT_BRANCH,
                    is_private=is_private,
                    include_patterns=include_patterns,
                    exclude_patterns=exclude_patterns,
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    row = await self._load_by_key(
                        session, user_id, provider, owner, repo
                    )
                    if row is None:
                        raise
            else:
                if branch:
                    row.branch = branch
                row.is_private = is_private
                await session.commit()
            await session.refresh(row)
            return TrackedRepository.from_row(row)

    async def remove_repository(
        self,
        *,
        owner: str,
        repo: str,
        provider: str = "github",
        user_id: str = SYSTEM_USER_ID,
    ) -> bool:
        """Stop tracking a repository and drop its file references."""
        async with self._session_factory() as session, session.begin():
            row = await self._load_by_key(session, user_id, provider, owner, repo)
            if row is None:
                return False
            await session.execute(
                delete(RepositoryFile).where(RepositoryFile.repo_id == row.id)
            )
            await session.delete(row)
        return True

    @staticmethod
    async def _load_by_key(
        session: AsyncSession,
        user_id: str,
        provider: str,
        owner: str,
        repo: str,
    ) -> RepositoryConfig | None:
        return await session.scalar(
            select(RepositoryConfig).where(
                RepositoryConfig.user_id == user_id,
                RepositoryConfig.provider == provider,
                RepositoryConfig.owner == owner,
                RepositoryConfig.repo == repo,
            )
        )

    async def summarise(self, provider: str | None = None) -> RepositorySummary:
        """Return repository counts and the most recent failures."""
        now = self._clock()
        scope = (
            (RepositoryConfig.provider == provider,) if provider is not None else ()
        )

        async def count(session: AsyncSession, *criteria: ColumnElement[bool]) -> int:
            value = await session.scalar(
                select(func.count())
                .select_from(RepositoryConfig)
                .where(*scope, *criteria)
            )
            return int(value or 0)

        async with self._session_factory() as session:
            total = await count(session)
            never_synced = await count(
                session, RepositoryConfig.last_synced_at.is_(None)
            )
            failing = await count(session, RepositoryConfig.retry_count > 0)
            rate_limited = await count(session, RepositoryConfig.rate_limit_reset > now)
            rows = await session.scalars(
                select(RepositoryConfig)
                .where(*scope, RepositoryConfig.retry_count > 0)
                .order_by(RepositoryConfig.updated_at.desc())
                .limit(_RECENT_FAILURE_LIMIT)
            )
            failures = tuple(
                FailureSummary(
                    repo_id=row.id,
                    slug=row.slug,
                    retry_count=row.retry_count,
                    next_retry_at=row.next_retry_at,
                    last_error=row.last_error,
                )
                for row in rows
            )
        return RepositorySummary(
            total=total,
            never_synced=never_synced,
            failing=failing,
            rate_limited=rate_limited,
            recent_failures=failures,
        )


__all__ = [
    "BASE_RETRY_DELAY",
    "MAX_RETRY_DELAY",
    "FailureSummary",
    "RepositoryStateStore",
    "RepositorySummary",
    "TrackedRepository",
    "backoff_delay",
]
