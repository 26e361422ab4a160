"""Application factory for the reposync Falcon ASGI application.

``create_app()`` always registers the health probes. When ingestion
dependencies are supplied it also registers the webhook receiver, the status
summary and the resync endpoint.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create a full app::

    from reposync.api.app import AppDependencies, create_app

    app = create_app(AppDependencies(ingestion=deps))

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from reposync.api.errors import register_error_handlers
from reposync.api.health.resources import HealthResource, ReadyResource

if typ.TYPE_CHECKING:
    from reposync.factory import IngestorDependencies

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    Attributes
    ----------
    ingestion
        Ingestion dependency bundle. When ``None`` only health endpoints
        are registered.

    """

    ingestion: IngestorDependencies | None = None


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Routes
    ------
    ``GET /health``, ``GET /ready``
        Always registered.
    ``POST /webhooks/github``, ``GET /status``,
    ``POST /repositories/{repo_id}/resync``
        Registered when ``dependencies.ingestion`` is set.

    """
    deps = dependencies.ingestion if dependencies is not None else None

    app = falcon.asgi.App()  # type: ignore[no-matching-overload]  # Falcon stubs

    app.add_route("/health", HealthResource())
    app.add_route(
        "/ready", ReadyResource(deps.session_factory if deps is not None else None)
    )

    if deps is not None:
        from reposync.api.repositories.resources import ResyncResource
        from reposync.api.status.resources import StatusResource
        from reposync.api.webhooks.resources import GitHubWebhookResource

        app.add_route("/webhooks/github", GitHubWebhookResource(deps))
        app.add_route("/status", StatusResource(deps.state, deps.metrics))
        app.add_route("/repositories/{repo_id}/resync", ResyncResource(deps))

    register_error_handlers(app)
    return app
