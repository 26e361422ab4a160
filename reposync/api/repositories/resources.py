"""Management resources for a single tracked repository.

``POST /repositories/{repo_id}/resync`` resets the repository's cursor and
gates, then enqueues a full repository sync.
"""

from __future__ import annotations

import typing as typ

import falcon

from reposync.api.errors import RepositoryNotFoundError
from reposync.queue.messages import IngestMessage

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from reposync.factory import IngestorDependencies

__all__ = ["ResyncResource"]


class ResyncResource:
    """Force a full re-ingestion of one repository."""

    def __init__(self, deps: IngestorDependencies) -> None:
        """Store the ingestion dependencies."""
        self._deps = deps

    async def on_post(self, _req: Request, resp: Response, *, repo_id: str) -> None:
        """Handle POST request to force a resync.

        Raises
        ------
        RepositoryNotFoundError
            If no tracked repository has ``repo_id``.

        """
        state = self._deps.state
        if not await state.force_resync(repo_id):
            raise RepositoryNotFoundError(repo_id)
        repository = await state.get(repo_id)
        if repository is None:
            raise RepositoryNotFoundError(repo_id)

        await self._deps.ingest_queue.send(IngestMessage.for_repository(repository))
        self._deps.metrics.increment("api.repository.resync")
        resp.media = {
            "status": "enqueued",
            "repo_id": repo_id,
            "repository": repository.slug,
        }
        resp.status = falcon.HTTP_202
