"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reposync.config import IngestorConfig
from reposync.content.backends import InMemoryBlobBackend
from reposync.factory import build_dependencies
from reposync.metrics import InMemoryMetricsSink
from reposync.storage import init_storage
from tests.helpers.github_api import SERVICE_TOKEN, WEBHOOK_SECRET, FakeGitHub
from tests.helpers.queues import InMemoryDeadLetterQueue, InMemoryIngestQueue

if typ.TYPE_CHECKING:
    from pathlib import Path

    from reposync.factory import IngestorDependencies

try:
    from py_pglite import PGliteConfig, PGliteManager

    _PGLITE_AVAILABLE = True
except ImportError:  # pragma: no cover - optional dependency
    _PGLITE_AVAILABLE = False

logger = logging.getLogger(__name__)


def _should_use_pglite() -> bool:
    """Return True when tests should run against py-pglite Postgres."""
    target = os.getenv("REPOSYNC_TEST_DB", "sqlite").lower()
    return target == "pglite" and _PGLITE_AVAILABLE


def _find_free_port() -> int:
    """Find an available TCP port for a temporary Postgres instance."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@contextlib.asynccontextmanager
async def _pglite_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Start a py-pglite Postgres and yield an async engine bound to it."""
    port = _find_free_port()
    config = PGliteConfig(
        use_tcp=True, tcp_host="127.0.0.1", tcp_port=port, work_dir=tmp_path / "pg"
    )

    with PGliteManager(config):
        url = (
            f"postgresql+asyncpg://postgres:postgres@{config.tcp_host}:"
            f"{config.tcp_port}/postgres"
        )
        engine = create_async_engine(url)
        try:
            yield engine
        finally:
            await engine.dispose()


async def _try_setup_pglite(
    tmp_path: Path,
) -> tuple[AsyncEngine, typ.Any] | None:
    """Attempt to set up a py-pglite Postgres engine.

    Returns a tuple of (engine, engine_cm) on success, or None if py-pglite
    is not selected or fails to initialise.
    """
    if not _should_use_pglite():
        return None

    engine_cm = None
    try:
        engine_cm = _pglite_engine(tmp_path)
        engine = await engine_cm.__aenter__()
        await init_storage(engine)
    except Exception as exc:  # noqa: BLE001
        # pragma: no cover - fall back when py-pglite fails at any stage
        logger.warning("py-pglite unavailable, falling back to SQLite: %s", exc)
        if engine_cm is not None:
            with contextlib.suppress(Exception):
                await engine_cm.__aexit__(None, None, None)
        return None
    else:
        return (engine, engine_cm)


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise every reposync table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reposync.db'}")
    try:
        await init_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory with the schema created."""
    engine_cm = None
    result = await _try_setup_pglite(tmp_path)
    if result is not None:
        engine, engine_cm = result
    else:
        engine = await _setup_sqlite(tmp_path)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()
        if engine_cm is not None:
            await engine_cm.__aexit__(None, None, None)


@pytest.fixture
def ingestor_config() -> IngestorConfig:
    """Return a configuration with a service token and webhook secret."""
    return IngestorConfig(
        github_token=SERVICE_TOKEN,
        webhook_secret=WEBHOOK_SECRET,
        concurrency=5,
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    """Return an empty fake GitHub API."""
    return FakeGitHub()


@pytest.fixture
def ingest_queue() -> InMemoryIngestQueue:
    """Return an in-memory ingest queue."""
    return InMemoryIngestQueue()


@pytest.fixture
def dead_letters() -> InMemoryDeadLetterQueue:
    """Return an in-memory dead-letter queue."""
    return InMemoryDeadLetterQueue()


@pytest.fixture
def blob_backend() -> InMemoryBlobBackend:
    """Return an in-memory blob backend."""
    return InMemoryBlobBackend()


@pytest.fixture
def metrics() -> InMemoryMetricsSink:
    """Return an in-memory metrics sink."""
    return InMemoryMetricsSink()


@pytest_asyncio.fixture
async def deps(  # noqa: PLR0913
    session_factory: async_sessionmaker[AsyncSession],
    ingestor_config: IngestorConfig,
    fake_github: FakeGitHub,
    ingest_queue: InMemoryIngestQueue,
    dead_letters: InMemoryDeadLetterQueue,
    blob_backend: InMemoryBlobBackend,
    metrics: InMemoryMetricsSink,
) -> typ.AsyncIterator[IngestorDependencies]:
    """Yield a dependency bundle wired to in-memory fakes."""
    http_client = fake_github.client()
    bundle = build_dependencies(
        ingestor_config,
        session_factory,
        ingest_queue=ingest_queue,
        dead_letters=dead_letters,
        backend=blob_backend,
        metrics=metrics,
        http_client=http_client,
    )
    try:
        yield bundle
    finally:
        await bundle.aclose()
        await http_client.aclose()
