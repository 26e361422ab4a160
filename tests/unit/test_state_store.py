"""Unit tests for the repository state store."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest

from reposync.common.time import to_epoch
from reposync.content.backends import InMemoryBlobBackend
from reposync.content.service import ContentStore
from reposync.state.service import (
    MAX_RETRY_DELAY,
    RepositoryStateStore,
    backoff_delay,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class _Clock:
    def __init__(self) -> None:
        self.now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.UTC)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> _Clock:
    """Return a controllable UTC clock."""
    return _Clock()


@pytest.fixture
def state(
    session_factory: async_sessionmaker[AsyncSession], clock: _Clock
) -> RepositoryStateStore:
    """Return a state store on the test clock with one hour staleness."""
    return RepositoryStateStore(
        session_factory, staleness=dt.timedelta(hours=1), clock=clock
    )


async def _due_ids(state: RepositoryStateStore) -> list[str]:
    return [repo.id for repo in await state.get_due()]


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (1, dt.timedelta(minutes=5)),
        (2, dt.timedelta(minutes=10)),
        (3, dt.timedelta(minutes=20)),
        (10, MAX_RETRY_DELAY),
        (1000, MAX_RETRY_DELAY),
    ],
)
def test_backoff_delay(count: int, expected: dt.timedelta) -> None:
    """Delays double from five minutes and cap at a day."""
    assert backoff_delay(count) == expected


class TestTracking:
    """Adding, finding and removing repositories."""

    @pytest.mark.asyncio
    async def test_add_repository_is_idempotent(
        self, state: RepositoryStateStore
    ) -> None:
        """Re-adding updates branch and visibility on the same row."""
        first = await state.add_repository(owner="acme", repo="api")
        second = await state.add_repository(
            owner="acme", repo="api", branch="develop", is_private=True
        )

        assert first.id == second.id
        assert first.branch == "main"
        assert second.branch == "develop"
        assert second.is_private

    @pytest.mark.asyncio
    async def test_patterns_round_trip(self, state: RepositoryStateStore) -> None:
        """Include and exclude patterns come back as tuples."""
        tracked = await state.add_repository(
            owner="acme",
            repo="docs",
            include_patterns=["docs/**"],
            exclude_patterns=["docs/drafts/**"],
        )

        loaded = await state.get(tracked.id)

        assert loaded is not None
        assert loaded.include_patterns == ("docs/**",)
        assert loaded.exclude_patterns == ("docs/drafts/**",)

    @pytest.mark.asyncio
    async def test_find_by_origin_ignores_case(
        self, state: RepositoryStateStore
    ) -> None:
        """Webhook owner and repo names match regardless of case."""
        system = await state.add_repository(owner="Acme", repo="API")
        user = await state.add_repository(owner="acme", repo="api", user_id="u-1")

        found = await state.find_by_origin("github", "ACME", "api")

        assert {repo.id for repo in found} == {system.id, user.id}
        assert await state.find_by_origin("gitlab", "acme", "api") == []

    @pytest.mark.asyncio
    async def test_remove_repository_drops_references(
        self,
        state: RepositoryStateStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Removing a repository deletes its file references."""
        content = ContentStore(session_factory, InMemoryBlobBackend())
        tracked = await state.add_repository(owner="acme", repo="api")
        stored = await content.store(b"x", mime_type="text/plain")
        await content.add_reference(tracked.id, "x.txt", stored.sha, 1, "text/plain")

        assert await state.remove_repository(owner="acme", repo="api")
        assert await state.get(tracked.id) is None
        assert await content.get_references(stored.sha) == []
        assert not await state.remove_repository(owner="acme", repo="api")


class TestDueSelection:
    """Admission gate used by the scheduler."""

    @pytest.mark.asyncio
    async def test_never_synced_is_due(self, state: RepositoryStateStore) -> None:
        """New repositories are due immediately."""
        tracked = await state.add_repository(owner="acme", repo="api")

        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_fresh_success_is_not_due_until_stale(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """A synced repository returns once the staleness window passes."""
        tracked = await state.add_repository(owner="acme", repo="api")
        await state.record_success(tracked.id, commit_sha="c1", etag='W/"c1"')

        assert await _due_ids(state) == []
        clock.advance(minutes=61)
        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_pending_backoff_keeps_repository_out(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """Three transient failures schedule the next attempt 20 minutes out."""
        tracked = await state.add_repository(owner="acme", repo="api")
        for _ in range(3):
            retry_count = await state.record_failure(
                tracked.id, "HTTP 502", is_transient=True
            )

        loaded = await state.get(tracked.id)
        assert retry_count == 3
        assert loaded is not None
        assert loaded.next_retry_at == clock.now + dt.timedelta(minutes=20)
        assert await _due_ids(state) == []

        clock.advance(minutes=20)
        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_stale_repository_waits_for_its_retry_time(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """Staleness does not bypass a scheduled retry."""
        tracked = await state.add_repository(owner="acme", repo="api")
        await state.record_success(tracked.id, commit_sha="c1")
        clock.advance(hours=2)
        await state.record_failure(tracked.id, "HTTP 502", is_transient=True)

        assert await _due_ids(state) == []

        clock.advance(minutes=5)
        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_permanent_failure_clears_retry_time(
        self, state: RepositoryStateStore
    ) -> None:
        """Non-transient failures count but schedule no retry."""
        tracked = await state.add_repository(owner="acme", repo="api")

        await state.record_failure(tracked.id, "bad credentials", is_transient=False)

        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.retry_count == 1
        assert loaded.next_retry_at is None
        assert loaded.last_error == "bad credentials"

    @pytest.mark.asyncio
    async def test_rate_limit_gate(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """A rate-limited repository is skipped until the window resets."""
        tracked = await state.add_repository(owner="acme", repo="api")
        reset = clock.now + dt.timedelta(minutes=10)

        assert await state.record_rate_limit(tracked.id, to_epoch(reset))
        assert await _due_ids(state) == []

        clock.advance(minutes=10)
        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_rate_limit_without_reset_uses_default(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """A missing reset header gates for one minute."""
        tracked = await state.add_repository(owner="acme", repo="api")

        await state.record_rate_limit(tracked.id, None)

        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.rate_limit_reset == clock.now + dt.timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_limit_and_provider_filter(
        self, state: RepositoryStateStore
    ) -> None:
        """Selection honours the limit and provider filter."""
        for name in ("a", "b", "c"):
            await state.add_repository(owner="acme", repo=name)

        assert len(await state.get_due(limit=2)) == 2
        assert await state.get_due(provider="gitlab") == []


class TestCursor:
    """Cursor, queued marker and forced resyncs."""

    @pytest.mark.asyncio
    async def test_success_clears_matching_queued_commit(
        self, state: RepositoryStateStore
    ) -> None:
        """Only a success for the queued commit clears the marker."""
        tracked = await state.add_repository(owner="acme", repo="api")
        await state.mark_queued(tracked.id, "c2")

        await state.record_success(tracked.id, commit_sha="c1")
        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.queued_commit_sha == "c2"

        await state.record_success(tracked.id, commit_sha="c2")
        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.queued_commit_sha is None
        assert loaded.last_commit_sha == "c2"

    @pytest.mark.asyncio
    async def test_success_resets_retry_state(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """Success clears the failure counter and stamps the sync time."""
        tracked = await state.add_repository(owner="acme", repo="api")
        await state.record_failure(tracked.id, "boom", is_transient=True)

        assert await state.record_success(tracked.id)

        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.retry_count == 0
        assert loaded.next_retry_at is None
        assert loaded.last_error is None
        assert loaded.last_synced_at == clock.now

    @pytest.mark.asyncio
    async def test_force_resync_resets_everything(
        self, state: RepositoryStateStore, clock: _Clock
    ) -> None:
        """A forced resync makes the repository due with no cursor."""
        tracked = await state.add_repository(owner="acme", repo="api")
        await state.record_success(tracked.id, commit_sha="c1", etag='W/"c1"')
        await state.record_rate_limit(
            tracked.id, to_epoch(clock.now + dt.timedelta(hours=1))
        )

        assert await state.force_resync(tracked.id)

        loaded = await state.get(tracked.id)
        assert loaded is not None
        assert loaded.last_commit_sha is None
        assert loaded.etag is None
        assert loaded.rate_limit_reset is None
        assert await _due_ids(state) == [tracked.id]

    @pytest.mark.asyncio
    async def test_unknown_repository(self, state: RepositoryStateStore) -> None:
        """Mutations of unknown ids report absence."""
        assert not await state.record_success("missing")
        assert await state.record_failure("missing", "x", is_transient=True) is None
        assert not await state.mark_queued("missing", "c1")
        assert not await state.force_resync("missing")


@pytest.mark.asyncio
async def test_summarise_counts(state: RepositoryStateStore, clock: _Clock) -> None:
    """The summary counts never-synced, failing and rate-limited repositories."""
    synced = await state.add_repository(owner="acme", repo="synced")
    failing = await state.add_repository(owner="acme", repo="failing")
    limited = await state.add_repository(owner="acme", repo="limited")
    await state.record_success(synced.id, commit_sha="c1")
    await state.record_failure(failing.id, "HTTP 500", is_transient=True)
    await state.record_rate_limit(
        limited.id, to_epoch(clock.now + dt.timedelta(minutes=5))
    )

    summary = await state.summarise()

    assert summary.total == 3
    assert summary.never_synced == 2
    assert summary.failing == 1
    assert summary.rate_limited == 1
    assert [f.slug for f in summary.recent_failures] == ["acme/failing"]
    assert summary.recent_failures[0].last_error == "HTTP 500"
