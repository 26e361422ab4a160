"""Command-line entrypoint for schema setup, tracking and scheduler runs.

Subcommands
-----------
``init-db``
    Create every reposync table.
``track OWNER/REPO``
    Track a repository for the system user.
``sync-once``
    Run one scheduler pass. With ``--inline`` the enqueued messages are
    processed in this process instead of being sent to Dramatiq.
``scheduler``
    Run scheduler passes every ``REPOSYNC_SCHEDULER_INTERVAL_SECONDS``.

All subcommands read ``REPOSYNC_DATABASE_URL`` and the other ``REPOSYNC_*``
settings from the environment.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import typing as typ

from reposync.config import IngestorConfig
from reposync.logging import configure_logging, get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from reposync.factory import IngestorDependencies
    from reposync.queue.messages import IngestMessage
    from reposync.scheduler import SchedulerResult

logger = get_logger(__name__)


class _CollectingQueue:
    """Ingest queue that keeps messages for in-process processing."""

    def __init__(self) -> None:
        self.messages: list[IngestMessage] = []

    async def send(self, message: IngestMessage) -> None:
        self.messages.append(message)


def _open_database(
    config: IngestorConfig,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    if not config.database_url:
        msg = "REPOSYNC_DATABASE_URL must be set"
        raise SystemExit(msg)
    engine = create_async_engine(config.database_url)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


def _format_result(result: SchedulerResult) -> str:
    text = (
        f"checked {result.checked}/{result.candidates}: "
        f"{result.enqueued} enqueued, {result.unchanged} unchanged, "
        f"{result.in_flight} in flight, {result.failed} failed"
    )
    if result.deadline_exceeded:
        text += " (deadline reached)"
    return text


async def _init_db(config: IngestorConfig) -> int:
    from reposync.storage import init_storage

    engine, _ = _open_database(config)
    try:
        await init_storage(engine)
    finally:
        await engine.dispose()
    print("reposync tables are ready")
    return 0


async def _track(config: IngestorConfig, args: argparse.Namespace) -> int:
    from reposync.state.service import RepositoryStateStore

    owner, sep, repo = args.slug.partition("/")
    if not sep or not owner or not repo:
        print(f"expected OWNER/REPO, got {args.slug!r}")
        return 2

    engine, session_factory = _open_database(config)
    try:
        tracked = await RepositoryStateStore(session_factory).add_repository(
            owner=owner,
            repo=repo,
            branch=args.branch,
            is_private=args.private,
            include_patterns=args.include or None,
            exclude_patterns=args.exclude or None,
        )
    finally:
        await engine.dispose()
    print(f"tracking {tracked.slug}@{tracked.branch} as {tracked.id}")
    return 0


async def _run_pass(
    deps: IngestorDependencies, *, limit: int | None, inline: bool
) -> SchedulerResult:
    from reposync.queue.processor import process_queue_batch
    from reposync.scheduler import run_scheduled_sync

    result = await run_scheduled_sync(deps, limit=limit)
    if inline and isinstance(deps.ingest_queue, _CollectingQueue):
        messages = deps.ingest_queue.messages[:]
        deps.ingest_queue.messages.clear()
        if messages:
            batch = await process_queue_batch(messages, deps)
            log_info(
                logger,
                "Processed %d messages inline (%d failed)",
                len(batch.outcomes),
                batch.failed,
            )
    return result


async def _sync(config: IngestorConfig, args: argparse.Namespace) -> int:
    from reposync.factory import build_dependencies
    from reposync.queue.publisher import DeadLetterStore

    engine, session_factory = _open_database(config)
    queues: dict[str, typ.Any] = {}
    if args.inline:
        queues = {
            "ingest_queue": _CollectingQueue(),
            "dead_letters": DeadLetterStore(session_factory),
        }
    deps = build_dependencies(config, session_factory, **queues)
    iterations = 0
    try:
        while True:
            result = await _run_pass(deps, limit=args.limit, inline=args.inline)
            print(_format_result(result))
            iterations += 1
            if not args.loop or (args.iterations and iterations >= args.iterations):
                break
            await asyncio.sleep(config.scheduler_interval_seconds)
    finally:
        await deps.aclose()
        await engine.dispose()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reposync", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the reposync tables")

    track = sub.add_parser("track", help="Track a repository")
    track.add_argument("slug", help="Repository as OWNER/REPO")
    track.add_argument("--branch", default=None, help="Branch to follow")
    track.add_argument("--private", action="store_true", help="Private repository")
    track.add_argument(
        "--include", action="append", default=[], help="Include glob (repeatable)"
    )
    track.add_argument(
        "--exclude", action="append", default=[], help="Exclude glob (repeatable)"
    )

    for name, loop in (("sync-once", False), ("scheduler", True)):
        command = sub.add_parser(
            name,
            help="Run scheduler passes in a loop" if loop else "Run one scheduler pass",
        )
        command.set_defaults(loop=loop)
        command.add_argument(
            "--limit", type=int, default=None, help="Cap on repositories per pass"
        )
        command.add_argument(
            "--inline",
            action="store_true",
            help="Process enqueued messages in this process",
        )
        if loop:
            command.add_argument(
                "--iterations",
                type=int,
                default=0,
                help="Stop after N passes (0 runs forever)",
            )
        else:
            command.set_defaults(iterations=1)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the reposync CLI.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 2 for bad arguments.

    """
    args = _build_parser().parse_args(argv)

    level_str = os.environ.get("REPOSYNC_LOG_LEVEL", "INFO")
    level, invalid = configure_logging(level_str)
    if invalid:
        log_warning(
            logger, "Invalid REPOSYNC_LOG_LEVEL %r, falling back to %s", level_str, level
        )

    config = IngestorConfig.from_env()
    match args.command:
        case "init-db":
            return asyncio.run(_init_db(config))
        case "track":
            return asyncio.run(_track(config, args))
        case _:
            return asyncio.run(_sync(config, args))


if __name__ == "__main__":
    raise SystemExit(main())
