"""Build the dependency bundle shared by every ingestion entrypoint.

``build_dependencies`` is called once per process (API worker, Dramatiq
worker or CLI run) and the resulting :class:`IngestorDependencies` is passed
explicitly to :func:`~reposync.webhook.handle_webhook`,
:func:`~reposync.scheduler.run_scheduled_sync` and
:func:`~reposync.queue.processor.process_queue_batch`.

Usage
-----
Build dependencies for a worker::

    from reposync.config import IngestorConfig
    from reposync.factory import build_dependencies

    deps = build_dependencies(IngestorConfig.from_env(), session_factory)

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from reposync.content.backends import (
    FilesystemBlobBackend,
    HttpBlobBackend,
    InMemoryBlobBackend,
)
from reposync.content.service import ContentStore
from reposync.github.auth import GitHubAuthConfig, TokenResolver
from reposync.ingestors.factory import create_ingestor
from reposync.metrics import LoggingMetricsSink
from reposync.observability import IngestionEventLogger
from reposync.state.credentials import CredentialStore
from reposync.state.service import RepositoryStateStore

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reposync.config import IngestorConfig
    from reposync.content.backends import BlobBackend
    from reposync.ingestors.protocol import SourceIngestor
    from reposync.metrics import MetricsSink
    from reposync.queue.publisher import DeadLetterQueue, IngestQueue

type IngestorFactory = cabc.Callable[..., SourceIngestor]

__all__ = ["IngestorDependencies", "build_blob_backend", "build_dependencies"]


@dc.dataclass(slots=True)
class IngestorDependencies:
    """Stores, resolvers, queues and sinks used by one process.

    Attributes
    ----------
    config
        Validated configuration.
    session_factory
        Async session factory backing every store.
    state, content, credentials
        Repository state, content-addressed store and credential rows.
    tokens
        Resolver picking the credential for each repository.
    ingest_queue, dead_letters
        Queue boundaries; Dramatiq adapters in production, in-memory fakes
        in tests.
    metrics, events
        Metrics sink and structured ingestion event logger.
    http_client
        Optional httpx client shared by the GitHub clients built per
        repository; tests inject one backed by ``httpx.MockTransport``.
    ingestor_factory
        Provider-keyed ingestor factory.

    """

    config: IngestorConfig
    session_factory: async_sessionmaker[AsyncSession]
    state: RepositoryStateStore
    content: ContentStore
    credentials: CredentialStore
    tokens: TokenResolver
    ingest_queue: IngestQueue
    dead_letters: DeadLetterQueue
    metrics: MetricsSink = dc.field(default_factory=LoggingMetricsSink)
    events: IngestionEventLogger = dc.field(default_factory=IngestionEventLogger)
    http_client: httpx.AsyncClient | None = None
    ingestor_factory: IngestorFactory = create_ingestor

    async def aclose(self) -> None:
        """Close HTTP resources owned by the bundle."""
        await self.tokens.aclose()
        await self.content.aclose()


def build_blob_backend(config: IngestorConfig) -> BlobBackend:
    """Pick the blob backend: URL first, then path, else in-memory."""
    if config.blob_store_url:
        return HttpBlobBackend(config.blob_store_url)
    if config.blob_store_path is not None:
        return FilesystemBlobBackend(config.blob_store_path)
    return InMemoryBlobBackend()


def build_dependencies(  # noqa: PLR0913
    config: IngestorConfig,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    ingest_queue: IngestQueue | None = None,
    dead_letters: DeadLetterQueue | None = None,
    backend: BlobBackend | None = None,
    metrics: MetricsSink | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: cabc.Callable[[], dt.datetime] | None = None,
) -> IngestorDependencies:
    """Assemble :class:`IngestorDependencies` from configuration.

    Parameters
    ----------
    config
        Validated configuration.
    session_factory
        Async session factory for every store.
    ingest_queue, dead_letters
        Queue adapters. When omitted the Dramatiq actors in
        :mod:`reposync.queue.actor` are used.
    backend
        Blob backend override; otherwise chosen by
        :func:`build_blob_backend`.
    metrics
        Metrics sink; defaults to :class:`LoggingMetricsSink`.
    http_client
        Shared httpx client for GitHub and OAuth calls.
    clock
        UTC clock override for the state store and token resolver.

    """
    if ingest_queue is None or dead_letters is None:
        from reposync.queue.actor import dead_letter_job, ingest_message_job
        from reposync.queue.publisher import (
            DramatiqDeadLetterQueue,
            DramatiqIngestQueue,
        )

        ingest_queue = ingest_queue or DramatiqIngestQueue(ingest_message_job)
        dead_letters = dead_letters or DramatiqDeadLetterQueue(dead_letter_job)

    clock_kwargs = {} if clock is None else {"clock": clock}
    credentials = CredentialStore(session_factory)
    state = RepositoryStateStore(
        session_factory,
        staleness=dt.timedelta(seconds=config.staleness_seconds),
        **clock_kwargs,
    )
    tokens = TokenResolver(
        GitHubAuthConfig(
            service_token=config.github_token or "",
            app_id=config.github_app_id,
            private_key=config.github_private_key,
            client_id=config.github_client_id,
            client_secret=config.github_client_secret,
            api_url=config.github_api_url,
        ),
        credentials,
        http_client=http_client,
        **clock_kwargs,
    )
    return IngestorDependencies(
        config=config,
        session_factory=session_factory,
        state=state,
        content=ContentStore(session_factory, backend or build_blob_backend(config)),
        credentials=credentials,
        tokens=tokens,
        ingest_queue=ingest_queue,
        dead_letters=dead_letters,
        metrics=metrics or LoggingMetricsSink(),
        http_client=http_client,
    )
