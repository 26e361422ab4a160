"""reposync runtime entrypoint for container deployments.

This module provides the ASGI application factory used by Granian. It
delegates to :func:`reposync.api.app.create_app` while keeping the
``reposync.runtime:create_app`` entrypoint stable.

When ``REPOSYNC_DATABASE_URL`` is set, the runtime builds the full ingestion
dependency bundle so the app serves the webhook, status and resync routes.
Otherwise it starts in health-only mode.

Configuration is driven by environment variables:

- ``REPOSYNC_HOST``: Bind address (default ``0.0.0.0``)
- ``REPOSYNC_PORT``: Listen port (default ``8080``)
- ``REPOSYNC_LOG_LEVEL``: Log level (default ``INFO``)
- ``REPOSYNC_DATABASE_URL``: Database connection URL (optional; enables
  ingestion endpoints when set)

Run the service directly with ``python -m reposync.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from reposync.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

# TCP port number range limits
_MIN_PORT = 1
_MAX_PORT = 65535


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        log_error(
            logger,
            "Invalid REPOSYNC_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create the Falcon ASGI application from the environment.

    Returns
    -------
    falcon.asgi.App
        Full app when ``REPOSYNC_DATABASE_URL`` is set, health-only
        otherwise.

    """
    from reposync.api.app import AppDependencies
    from reposync.api.app import create_app as _create_api_app
    from reposync.config import IngestorConfig

    config = IngestorConfig.from_env()
    if config.database_url is None:
        log_info(logger, "REPOSYNC_DATABASE_URL not set; serving health only")
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from reposync.factory import build_dependencies

    engine = create_async_engine(config.database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    if not config.webhook_secret:
        log_warning(
            logger, "REPOSYNC_WEBHOOK_SECRET not set; webhook deliveries will be 401"
        )
    deps = build_dependencies(config, session_factory)
    return _create_api_app(AppDependencies(ingestion=deps))


def main() -> None:
    """Start the reposync runtime server using Granian.

    Reads ``REPOSYNC_HOST``, ``REPOSYNC_PORT`` and ``REPOSYNC_LOG_LEVEL``
    from the environment and starts the ASGI server.
    """
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("REPOSYNC_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port_str = os.environ.get("REPOSYNC_PORT", "8080")
    port = _parse_port(port_str)
    log_level_str = os.environ.get("REPOSYNC_LOG_LEVEL", "INFO")

    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid REPOSYNC_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting reposync runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "reposync.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
