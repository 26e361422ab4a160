"""Dramatiq actors consuming the ingest and dead-letter queues.

The broker is configured before the actors are declared, so importing this
module in a test or local run installs a ``StubBroker`` unless a real broker
is already set.

Usage
-----
Queue a repository sync by hand:

>>> ingest_message_job.send(
...     {"type": "repository", "repoId": "r1", "provider": "github",
...      "owner": "octo", "repo": "demo"}
... )

Run a scheduler pass on a worker:

>>> scheduled_sync_job.send()

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
import msgspec
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reposync.config import IngestorConfig
from reposync.errors import MessageValidationError
from reposync.logging import get_logger, log_info
from reposync.queue._broker import ensure_broker_configured
from reposync.queue.messages import DeadLetterMessage
from reposync.queue.publisher import DeadLetterStore

if typ.TYPE_CHECKING:
    from reposync.factory import IngestorDependencies

type SessionFactory = async_sessionmaker[AsyncSession]

INGEST_QUEUE = "reposync.ingest"
DEAD_LETTER_QUEUE = "reposync.dead_letter"
SCHEDULER_QUEUE = "reposync.scheduler"

logger = get_logger(__name__)

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()

ensure_broker_configured()


def _database_url(config: IngestorConfig) -> str:
    if not config.database_url:
        msg = "REPOSYNC_DATABASE_URL must be set for queue workers"
        raise RuntimeError(msg)
    return config.database_url


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for ``database_url``.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.get(database_url)
            if engine is None:
                engine = create_async_engine(database_url)
                _ENGINE_CACHE[database_url] = engine
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


async def _dispose_engine(database_url: str) -> None:
    # Pooled connections are bound to the event loop that opened them.
    engine = _ENGINE_CACHE.get(database_url)
    if engine is not None:
        await engine.dispose()


def _run_with_dependencies[T](
    async_fn: typ.Callable[[IngestorDependencies], typ.Awaitable[T]],
) -> T:
    """Build dependencies inside a fresh event loop and run ``async_fn``.

    Dependencies hold httpx clients and pooled connections, both of which
    belong to one event loop, so they are built and closed per invocation.
    """
    from reposync.factory import build_dependencies

    ensure_broker_configured()
    config = IngestorConfig.from_env()
    database_url = _database_url(config)
    session_factory = _get_or_create_session_factory(database_url)

    async def run() -> T:
        deps = build_dependencies(config, session_factory)
        try:
            return await async_fn(deps)
        finally:
            await deps.aclose()
            await _dispose_engine(database_url)

    return asyncio.run(run())


@dramatiq.actor(queue_name=INGEST_QUEUE, max_retries=0)
def ingest_message_job(payload: dict[str, typ.Any]) -> str:
    """Process one ingest message.

    Retries are driven by the repository backoff and the scheduler rather
    than by Dramatiq, so the actor never re-raises a processing failure.

    Returns
    -------
    str
        The message status: ``completed``, ``unchanged`` or ``failed``.

    """
    from reposync.queue.processor import process_queue_batch

    async def execute(deps: IngestorDependencies) -> str:
        result = await process_queue_batch([payload], deps)
        return str(result.outcomes[0].status)

    return _run_with_dependencies(execute)


@dramatiq.actor(queue_name=DEAD_LETTER_QUEUE, max_retries=3)
def dead_letter_job(payload: dict[str, typ.Any]) -> int:
    """Persist one dead-letter message and return its row id.

    Raises
    ------
    MessageValidationError
        If ``payload`` is not a dead-letter message.

    """
    try:
        message = msgspec.convert(payload, type=DeadLetterMessage)
    except msgspec.ValidationError as exc:
        msg = f"invalid dead-letter payload: {exc}"
        raise MessageValidationError(msg, code="invalid_dead_letter") from exc

    async def execute(deps: IngestorDependencies) -> int:
        record_id = await DeadLetterStore(deps.session_factory).record(message)
        log_info(
            logger,
            "Stored dead letter %d for %s",
            record_id,
            message.original_message.get("repoId", "<unknown>"),
        )
        return record_id

    return _run_with_dependencies(execute)


@dramatiq.actor(queue_name=SCHEDULER_QUEUE, max_retries=0)
def scheduled_sync_job(*, limit: int | None = None) -> dict[str, int]:
    """Run one scheduler pass and return its counts."""
    from reposync.scheduler import run_scheduled_sync

    async def execute(deps: IngestorDependencies) -> dict[str, int]:
        result = await run_scheduled_sync(deps, limit=limit)
        return {
            "candidates": result.candidates,
            "enqueued": result.enqueued,
            "unchanged": result.unchanged,
            "in_flight": result.in_flight,
            "failed": result.failed,
        }

    return _run_with_dependencies(execute)


__all__ = [
    "DEAD_LETTER_QUEUE",
    "INGEST_QUEUE",
    "SCHEDULER_QUEUE",
    "dead_letter_job",
    "ingest_message_job",
    "scheduled_sync_job",
]
